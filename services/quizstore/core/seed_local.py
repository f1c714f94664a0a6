"""
Seed script for local testing of the quiz store.
Creates a sample draft, finishes it, and prints what ended up on disk.

Usage:
    python -m quizstore.core.seed_local
"""
import asyncio

from ..models import Attachment, Draft, Question, Round
from ..settings import get_settings
from .storage_service import QuizStorageService

# 1x1 transparent PNG
SAMPLE_PNG = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000001e221bc330000000049454e44ae426082"
)


def sample_draft() -> Draft:
    flag_question = Question(
        id="q1-r1-3",
        type="picture",
        question="Which country's flag is this?",
        possible_answers=["Japan", "Bangladesh", "Palau", "Laos"],
        correct_answers=[0],
    )
    flag_question.media = Attachment(
        owner_question_id=flag_question.id,
        filename="flag.png",
        mime_class="image",
        mime_type="image/png",
        payload=SAMPLE_PNG,
    )
    return Draft(
        id="q1",
        title="Geo Quiz",
        category="geography",
        rounds=[
            Round(
                name="Capitals",
                questions=[
                    Question(
                        id="q1-r1-1",
                        question="What is the capital of Australia?",
                        possible_answers=["Sydney", "Canberra", "Melbourne", "Perth"],
                        correct_answers=[1],
                    ),
                    Question(
                        id="q1-r1-2",
                        type="multiple-choice",
                        question="Which of these cities are capitals?",
                        possible_answers=["Bern", "Zurich", "Ottawa", "Toronto"],
                        correct_answers=[0, 2],
                    ),
                    flag_question,
                ],
            )
        ],
    )


async def seed():
    """Create sample data for testing."""
    print("🌱 Seeding quiz store...")

    settings = get_settings()
    service = QuizStorageService(settings)
    primary = await service.initialize_storage()
    print(f"📦 Using {'sqlite' if primary else 'json fallback'} backend")

    draft = sample_draft()
    print(f"📝 Saving draft '{draft.title}'...")
    result = await service.save_draft(draft)
    if not result.success:
        print(f"❌ Draft save failed: {result.error}")
        await service.close()
        return
    print(f"✅ Draft saved: {draft.id}")

    print("🏁 Promoting draft to a finished quiz...")
    result = await service.promote_draft(draft.id, draft.to_quiz())
    if not result.success:
        print(f"❌ Promotion failed: {result.error}")
        await service.close()
        return
    print("✅ Quiz finished")

    usage = await service.get_usage(fresh=True)
    print("\n" + "=" * 60)
    print("🎉 Seeding complete!")
    print("=" * 60)
    print(f"\n📋 Quizzes: {len(service.documents)}   Drafts: {len(service.drafts)}")
    print(f"💾 Used {usage.total_size} of {usage.capacity} bytes ({usage.percentage_used:.4f}%)")
    print()
    await service.close()


if __name__ == "__main__":
    asyncio.run(seed())
