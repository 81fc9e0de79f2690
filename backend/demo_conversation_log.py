"""Demo script for ConversationLog eviction and repair."""
import sys
sys.path.insert(0, '.')

from models.conversation import ConversationTurn, Role
from services.conversation_log import ConversationLog, IntegrityViolation, LogPolicy
from services.turn_store import InMemoryTurnStore, SupabaseTurnStore


def main():
    """Walk through the header/window lifecycle of one conversation."""
    print("=== ConversationLog Demo ===\n")

    use_supabase = "--supabase" in sys.argv
    store = SupabaseTurnStore() if use_supabase else InMemoryTurnStore()
    log = ConversationLog(store, policy=LogPolicy(header_size=10, window_size=50, eviction_batch=5))
    conversation_id = "whatsapp_demo"
    print(f"1. Using {'Supabase' if use_supabase else 'in-memory'} store, capacity {log.policy.capacity}\n")

    print("2. Seeding 10 header turns...")
    log.seed_header(conversation_id, [
        {"role": "system", "content": f"Onboarding step {i}"} for i in range(1, 11)
    ])
    print("✓ Header seeded\n")

    print("3. Appending 50 dialogue turns...")
    for i in range(11, 61):
        log.append_turn(conversation_id, Role.USER if i % 2 else Role.ASSISTANT, f"Dialogue {i}")
    print(f"✓ Conversation holds {len(log.load_history(conversation_id))} turns\n")

    print("4. Appending one more turn (triggers maintenance)...")
    index = log.append_turn(conversation_id, Role.USER, "Noch eine Frage")
    history = log.load_history(conversation_id)
    header, dialogue = log.split(history)
    print(f"✓ New turn got index {index}")
    print(f"  - Header turns: {len(header)}, dialogue turns: {len(dialogue)}")
    print(f"  - Oldest dialogue turn now: {dialogue[0].turn_index} -> {dialogue[0].content}\n")

    if not use_supabase:
        print("5. Simulating a half-finished renumber and repairing it...")
        store.insert_turn(ConversationTurn(conversation_id, 60, Role.ASSISTANT, "Stray turn"))
        try:
            log.load_history(conversation_id)
        except IntegrityViolation as e:
            print(f"✓ Detected: {e}")
        result = log.repair(conversation_id)
        print(f"✓ Repaired, renumbered {result.renumbered} turn(s)")
        print(f"  - Second repair changes anything: {log.repair(conversation_id).changed}\n")

    print("=== Demo complete ===")


if __name__ == "__main__":
    main()
