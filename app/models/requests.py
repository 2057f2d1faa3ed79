# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
#
# Missing fields default to "" so the endpoint can reject missing and
# blank values the same way (HTTP 400) before any stream is opened.
# Numeric account ids (`"accountId": 2`) are accepted and read as strings.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class AdviseRequest(BaseModel):
    """
    Request body for POST /advise — ask a question about one account.

    Example:
        {
            "question": "What should I do about my credit card debt?",
            "accountId": "2"
        }
    """

    question: str = Field(
        default="",
        max_length=2000,
        description="The user's financial question",
        examples=["What should I do about my credit card debt?"],
    )

    account_id: str = Field(
        default="",
        alias="accountId",
        max_length=100,
        description="Account whose financial records the answer is based on",
        examples=["2"],
    )

    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        json_schema_extra={
            "examples": [
                {
                    "question": "What should I do about my credit card debt?",
                    "accountId": "2",
                },
                {
                    "question": "Am I on track to retire at 60?",
                    "accountId": "2",
                },
            ]
        },
    )

    def missing_fields(self) -> list[str]:
        """Names of required fields that are missing or blank."""
        missing = []
        if not self.question.strip():
            missing.append("question")
        if not self.account_id.strip():
            missing.append("accountId")
        return missing
