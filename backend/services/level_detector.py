"""Learner level detection from course enrollments."""
import logging
import re
from dataclasses import dataclass
from typing import Optional

from supabase import create_client, Client

from services.tutor_prompts import DEFAULT_LEVEL
from config import SUPABASE_URL, SUPABASE_KEY

logger = logging.getLogger(__name__)

LEVEL_PATTERN = re.compile(r"[abc][12]", re.IGNORECASE)


@dataclass
class LearnerLevel:
    """CEFR level of a learner and the enrollment it came from."""
    level: str
    course_id: Optional[str] = None


def level_from_course(course_id: Optional[str]) -> str:
    """Extract the CEFR level from a course id such as ``german-b1-intensive``."""
    match = LEVEL_PATTERN.search(course_id or "")
    return match.group(0).upper() if match else DEFAULT_LEVEL


class LevelDetector:
    """Looks up a learner's newest active enrollment in Supabase."""

    def __init__(
        self,
        supabase_url: str = SUPABASE_URL,
        supabase_key: str = SUPABASE_KEY,
        table_name: str = "user_enrollments"
    ):
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")

        self.table_name = table_name
        self.client: Client = create_client(supabase_url, supabase_key)
        logger.info("LevelDetector initialized with Supabase")

    def detect(self, user_id: str) -> LearnerLevel:
        """
        Detect the learner's level.

        A failed lookup only costs personalization, so it is logged and the
        learner is treated as a beginner.
        """
        try:
            result = (
                self.client.table(self.table_name)
                .select("course_id")
                .eq("user_id", user_id)
                .eq("status", "active")
                .order("enrolled_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Enrollment lookup failed for {user_id}: {e}")
            return LearnerLevel(level=DEFAULT_LEVEL)

        if not result.data:
            return LearnerLevel(level=DEFAULT_LEVEL)

        course_id = result.data[0].get("course_id")
        level = level_from_course(course_id)
        logger.info(f"User {user_id} enrolled in {course_id}, using level {level}")
        return LearnerLevel(level=level, course_id=course_id)
