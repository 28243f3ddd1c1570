"""
Example 01: Basic Memory
========================

Demonstrates the simplest end-to-end usage of MemorySession:
- Persisting a conversation with remember()
- Recalling relevant history with recall()
- Answering a model's **ltm_search**(...) request with resolve_search()
- Watching retrieval progress through the event bus

Run without an API key:
    CHATMEM_MOCK_LLM=1 python examples/01_basic_memory.py

Run against DeepSeek (set your API key first):
    DEEPSEEK_API_KEY=sk-... python examples/01_basic_memory.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from chatmem import ChatMemConfig, ChatMemEvent, MemorySession, StoreConfig, make_send_fn

    print("=== chatmem Basic Memory Example ===\n")

    config = ChatMemConfig(store=StoreConfig(db_path="/tmp/chatmem_example_01.db"))
    model = config.provider.deepseek_model
    send = make_send_fn("deepseek", config.provider)

    async with MemorySession.open(config) as memory:
        await memory.store.clear_messages()

        memory.subscribe(
            ChatMemEvent.LTM_BATCH_CLASSIFIED,
            lambda event, p: print(
                f"  batch {p['batch']}: {p['relevant']}/{p['candidates']} relevant"
            ),
        )

        history = [
            ("user", "I'm planning a trip to Lisbon in May."),
            ("assistant", "Great choice! May is warm and not too crowded."),
            ("user", "My cat Miso will stay with my sister."),
            ("assistant", "Good to know Miso is in safe hands."),
            ("user", "Can you suggest a Python web framework?"),
            ("assistant", "FastAPI is a solid pick for async APIs."),
        ]
        for role, content in history:
            await memory.remember(role, content, model)
        print(f"Stored {len(history)} messages\n")

        question = "Who is looking after my cat?"
        print(f"Recall: {question}")
        result = await memory.recall(question, model, "deepseek", send)
        print(f"  found={result.found} batches={result.batches} tokens={result.total_tokens}")
        for msg in result.relevant_messages:
            print(f"  [{msg.id}] {msg.role}: {msg.content}")
        print()

        # A model reply asking for history
        reply = "Let me check our earlier chat. **ltm_search**(cat sister)"
        conversation = [{"role": "user", "content": question}]
        resolution = await memory.resolve_search(
            reply,
            conversation,
            model,
            "deepseek",
            send,
            system_prompt="You are a helpful assistant with long-term memory.",
        )
        print(f"Search triggered: {resolution.triggered} (query: {resolution.query!r})")
        print(f"Final answer: {resolution.response_text}")
        if resolution.usage is not None:
            print(f"Context usage: {resolution.usage.context_usage_percent}%")

    print("\nMemory closed cleanly.")


if __name__ == "__main__":
    asyncio.run(main())
