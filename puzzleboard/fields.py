"""Column catalog shared by validation, storage and every export format.

Adding or removing a column here is the only change needed for it to appear
in the SQL, the validators, the JSON shapes, the CSV header and the workbook.
"""

from dataclasses import dataclass, replace
from typing import Optional

PARTICIPANT_INFO = "participant_info"
QUIZ_RESPONSES = "quiz_responses"
PUZZLE_RESULT = "puzzle_result"


@dataclass(frozen=True)
class Field:
    column: str
    label: str
    section: str
    key: str
    payload_key: Optional[str] = None
    kind: str = "text"
    required: bool = False

    @property
    def is_answer(self) -> bool:
        return self.section == QUIZ_RESPONSES


COMPLETION_FIELDS = (
    Field("id", "ID", PUZZLE_RESULT, "id", kind="int"),
    Field("session_id", "Session ID", PUZZLE_RESULT, "session_id", "sessionId", required=True),
    Field("name", "Name", PUZZLE_RESULT, "name", "name", required=True),
    Field("email", "Email", PUZZLE_RESULT, "email", "email", required=True),
    Field("completion_time", "Completion Time (ms)", PUZZLE_RESULT, "completion_time", "completionTime", "int", True),
    Field("time_string", "Time", PUZZLE_RESULT, "time_string", "timeString", required=True),
    Field("difficulty", "Difficulty", PUZZLE_RESULT, "difficulty", "difficulty", "int", True),
    Field("move_count", "Moves", PUZZLE_RESULT, "move_count", "moveCount", "int", True),
    Field("accuracy", "Accuracy (%)", PUZZLE_RESULT, "accuracy", "accuracy", "int", True),
    Field("completed_at", "Completed At", PUZZLE_RESULT, "completed_at", "completedAt", required=True),
    Field("results_code", "Results Code", PUZZLE_RESULT, "results_code", "resultsCode", required=True),
    Field("created_at", "Recorded At", PUZZLE_RESULT, "created_at"),
)

LEADERBOARD_FIELDS = tuple(
    field for field in COMPLETION_FIELDS if field.column not in {"results_code", "created_at"}
)

QUIZ_ANSWER_FIELDS = (
    Field("q1_answer", "Question 1", QUIZ_RESPONSES, "question_1", "q1Answer"),
    Field("q2_part1", "Question 2 (Part 1)", QUIZ_RESPONSES, "question_2_part_1", "q2Part1"),
    Field("q2_part2", "Question 2 (Part 2)", QUIZ_RESPONSES, "question_2_part_2", "q2Part2"),
    Field("q3_answer", "Question 3", QUIZ_RESPONSES, "question_3", "q3Answer"),
    Field("q4_part1", "Question 4 (Part 1)", QUIZ_RESPONSES, "question_4_part_1", "q4Part1"),
    Field("q4_part2", "Question 4 (Part 2)", QUIZ_RESPONSES, "question_4_part_2", "q4Part2"),
    Field("q5_answer", "Question 5", QUIZ_RESPONSES, "question_5", "q5Answer"),
    Field("q6_answer", "Question 6", QUIZ_RESPONSES, "question_6", "q6Answer"),
    Field("q7_part1", "Question 7 (Part 1)", QUIZ_RESPONSES, "question_7_part_1", "q7Part1"),
    Field("q7_part2", "Question 7 (Part 2)", QUIZ_RESPONSES, "question_7_part_2", "q7Part2"),
    Field("q8_answer", "Question 8", QUIZ_RESPONSES, "question_8", "q8Answer"),
    Field("q9_answer", "Question 9", QUIZ_RESPONSES, "question_9", "q9Answer"),
    Field("q10_answer", "Question 10", QUIZ_RESPONSES, "question_10", "q10Answer"),
    Field("recipient_name", "Recipient Name", QUIZ_RESPONSES, "recipient_name", "recipientName"),
    Field("recipient_email", "Recipient Email", QUIZ_RESPONSES, "recipient_email", "recipientEmail"),
    Field("recipient_message", "Recipient Message", QUIZ_RESPONSES, "recipient_message", "recipientMessage"),
)

QUIZ_FIELDS = (
    (
        Field("id", "ID", PARTICIPANT_INFO, "id", kind="int"),
        Field("session_id", "Session ID", PARTICIPANT_INFO, "session_id", "sessionId", required=True),
        Field("participant_name", "Participant Name", PARTICIPANT_INFO, "name", "participantName", required=True),
        Field("participant_email", "Participant Email", PARTICIPANT_INFO, "email", "participantEmail", required=True),
        Field("participant_mobile", "Participant Mobile", PARTICIPANT_INFO, "mobile", "participantMobile", required=True),
    )
    + QUIZ_ANSWER_FIELDS
    + (
        Field("submitted_at", "Submitted At", PARTICIPANT_INFO, "submitted_at", "submittedAt", required=True),
        Field("created_at", "Recorded At", PARTICIPANT_INFO, "created_at"),
    )
)

# Quiz columns attached to a joined row; the session id is shared with the
# completion and the quiz surrogate id is renamed so it cannot shadow it.
_JOINED_QUIZ_RENAMES = {"id": "quiz_id"}
_JOINED_QUIZ_SKIPPED = {"session_id", "created_at"}

JOINED_QUIZ_FIELDS = tuple(
    replace(
        field,
        column=_JOINED_QUIZ_RENAMES.get(field.column, field.column),
        key=_JOINED_QUIZ_RENAMES.get(field.key, field.key),
        label="Quiz ID" if field.column == "id" else field.label,
    )
    for field in QUIZ_FIELDS
    if field.column not in _JOINED_QUIZ_SKIPPED
)

# joined column -> column of the stored quiz row
JOINED_QUIZ_SOURCES = {
    _JOINED_QUIZ_RENAMES.get(field.column, field.column): field.column
    for field in QUIZ_FIELDS
    if field.column not in _JOINED_QUIZ_SKIPPED
}

JOINED_FIELDS = COMPLETION_FIELDS + JOINED_QUIZ_FIELDS


def columns(fields) -> list:
    return [field.column for field in fields]


def labels(fields) -> list:
    return [field.label for field in fields]


def insertable(fields) -> tuple:
    return tuple(field for field in fields if field.payload_key)


def required_payload_keys(fields) -> list:
    return [field.payload_key for field in fields if field.required]
