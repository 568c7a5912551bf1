from __future__ import annotations
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from .models import PatientInfo, TurnOutcome

class StartCallRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    subject_id: str = Field(min_length=1)
    name: str = ""
    surgery_type: str = ""
    days_post_surgery: Optional[int] = Field(default=None, ge=0)

    def to_patient(self) -> PatientInfo:
        return PatientInfo(
            subject_id=self.subject_id,
            name=self.name,
            surgery_type=self.surgery_type,
            days_post_surgery=self.days_post_surgery,
        )

# Telephony gateways send null rather than "" when speech recognition heard nothing.
class TurnRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    utterance: Optional[str] = None
    stage_hint: Optional[str] = None

class TurnResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    prompt_text: str
    should_terminate: bool

    @classmethod
    def from_outcome(cls, outcome: TurnOutcome) -> "TurnResponse":
        return cls(prompt_text=outcome.prompt_text, should_terminate=outcome.should_terminate)
