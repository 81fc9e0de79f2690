"""Unit tests for LevelDetector and tutor prompts."""
import sys
sys.path.insert(0, 'backend')

import pytest
from unittest.mock import Mock, patch, MagicMock
from services.level_detector import LevelDetector, LearnerLevel, level_from_course
from services.tutor_prompts import LEVEL_PROMPTS, system_prompt_for


class TestLevelFromCourse:
    """Test suite for course id parsing."""

    @pytest.mark.parametrize("course_id,expected", [
        ("german-b1-intensive", "B1"),
        ("DEUTSCH_C1", "C1"),
        ("a2", "A2"),
        ("conversation-club", "A1"),
        (None, "A1"),
    ])
    def test_level_from_course(self, course_id, expected):
        assert level_from_course(course_id) == expected


class TestLevelDetector:
    """Test suite for LevelDetector."""

    @pytest.fixture
    def mock_client(self):
        return MagicMock()

    @pytest.fixture
    def detector(self, mock_client):
        with patch('services.level_detector.create_client', return_value=mock_client):
            yield LevelDetector(supabase_url="https://test.supabase.co", supabase_key="test_key")

    def enrollment_query(self, mock_client):
        return (
            mock_client.table.return_value.select.return_value
            .eq.return_value.eq.return_value.order.return_value.limit.return_value
        )

    def test_initialization_without_credentials(self):
        with pytest.raises(ValueError, match="SUPABASE_URL and SUPABASE_KEY"):
            LevelDetector(supabase_url="https://test.supabase.co", supabase_key=None)

    def test_detect_active_enrollment(self, detector, mock_client):
        self.enrollment_query(mock_client).execute.return_value = Mock(data=[{"course_id": "german-b2"}])

        learner = detector.detect("4917")

        assert learner == LearnerLevel(level="B2", course_id="german-b2")
        mock_client.table.assert_called_with("user_enrollments")
        mock_client.table.return_value.select.return_value.eq.return_value.eq.return_value.order.assert_called_with(
            "enrolled_at", desc=True
        )

    def test_detect_without_enrollment_defaults_to_a1(self, detector, mock_client):
        self.enrollment_query(mock_client).execute.return_value = Mock(data=[])

        assert detector.detect("4917") == LearnerLevel(level="A1")

    def test_detect_lookup_failure_defaults_to_a1(self, detector, mock_client):
        self.enrollment_query(mock_client).execute.side_effect = Exception("network down")

        assert detector.detect("4917").level == "A1"


class TestSystemPrompt:
    """Test suite for level system prompts."""

    def test_prompt_mentions_level(self):
        prompt = system_prompt_for("B1")
        assert prompt.startswith(LEVEL_PROMPTS["B1"])
        assert "B1 level" in prompt

    def test_unknown_level_falls_back_to_a1(self):
        assert system_prompt_for("C2") == system_prompt_for("A1")
