from __future__ import annotations

import json

from .models import PatientInfo, ReferenceContext, TriageLevel


OPENING_SYMPTOM_QUESTION = "How are you feeling today, and what symptoms are most bothering you right now?"
IDENTITY_QUESTION = "Are you the patient this call is for? Say yes or no, or press 1 for yes and 2 for no."
IDENTITY_REPROMPT_EMPTY = "I didn't catch that. Are you the patient this call is for? Say yes or no."
IDENTITY_REPROMPT_UNCLEAR = "Please confirm: are you the patient this call is for? Say yes or no."
IDENTITY_DECLINED = (
    "Thanks for letting me know. For privacy, I can only continue with the patient directly. Goodbye."
)
IDENTITY_UNCONFIRMED = "Sorry, I couldn't confirm identity. For privacy, I'll end this call now. Goodbye."
SYMPTOM_REPROMPT_EMPTY = "I didn't catch that. Could you describe how you're feeling in a short sentence?"
FAREWELL = "Thank you for your time. Take care and have a good day. Goodbye."

_CLOSING_BY_LEVEL = {
    TriageLevel.RED: (
        "Based on your responses, we believe you should be seen by your care team as soon as possible. "
        "We are notifying your clinical team now and someone will reach out to you shortly. "
        "If your symptoms worsen before then, please go to the nearest emergency room or call 911."
    ),
    TriageLevel.YELLOW: (
        "Based on your responses, we recommend a follow-up with your care team within the next day or two. "
        "We will notify your clinician so they can schedule that for you. "
        "In the meantime, if symptoms worsen, please contact your care team right away."
    ),
    TriageLevel.GREEN: (
        "Based on your responses, your recovery looks like it is on track. "
        "Keep following your post-surgery care instructions. "
        "We will check in again at your next scheduled follow-up."
    ),
}

_ACTION_BY_LEVEL = {
    TriageLevel.RED: "Readmit patient to hospital for urgent evaluation of possible post-surgical complication.",
    TriageLevel.YELLOW: "Refer patient to outpatient follow-up within 24-48 hours for further assessment.",
    TriageLevel.GREEN: "No immediate action needed. Continue routine post-operative monitoring per protocol.",
}


def greeting(care_team_name: str, patient: PatientInfo) -> str:
    who = patient.name.strip() if patient.name else "the patient"
    return (
        f"Hi, this is {care_team_name} calling for your post-surgery check-in. "
        f"To confirm privacy, is this {who}? Say yes or no, or press 1 for yes and 2 for no."
    )


def identity_confirmed_prompt() -> str:
    return "Thank you for confirming. " + OPENING_SYMPTOM_QUESTION


def closing_for(level: TriageLevel) -> str:
    return _CLOSING_BY_LEVEL[level]


def default_action_for(level: TriageLevel) -> str:
    return _ACTION_BY_LEVEL[level]


IDENTITY_SYSTEM = """You are a post-surgical follow-up call assistant.
Your task: classify whether the person on the phone confirmed they are the patient.
Return JSON only:
  { "classification": "YES" | "NO" | "UNCLEAR" }
Rules:
- "YES" if they confirm identity (e.g. "yes", "that's me", "speaking")
- "NO" if they deny (e.g. "no", "wrong person", "they're not here")
- "UNCLEAR" if ambiguous"""


def build_triage_system(context: ReferenceContext) -> str:
    recovery = context.recovery_expectations.strip() or (
        "(No recovery document available. Use general post-surgical knowledge.)"
    )
    history = context.prior_calls_digest.strip() or "(No prior check-in calls.)"
    return f"""You are a post-surgical patient triage agent on a voice follow-up call.

EXPECTED RECOVERY CONTEXT
{recovery}

PRIOR CHECK-IN CALLS
{history}

Compare everything the patient has said so far against the expected recovery context.
Return JSON only:
{{
  "next_question": "one short empathetic follow-up question, or empty string if done",
  "needs_followup": true/false,
  "end_call": true/false,
  "triage_level": "green" | "yellow" | "red",
  "reasoning_summary": "1-2 sentences comparing reported symptoms with expected recovery",
  "triage_confidence": 0.0-1.0,
  "matched_complications": ["complications from the recovery context that match"],
  "reported_symptoms": ["symptoms the patient reported"],
  "patient_facing_ack": "brief empathetic acknowledgement",
  "recommended_action": "specific actionable recommendation for the clinician"
}}

Conversation policy:
- Ask at least one follow-up when followup_count_used is 0 unless the reply is a clear red flag.
- Ask at most ONE focused follow-up per turn. Never exceed max_followups.
- Prioritize onset/timeline, worsening vs improving, severity, location.
- Never repeat a question already asked in the transcript.

Triage policy:
- red: matches warning signs (chest pain, severe shortness of breath, uncontrolled bleeding,
  confusion, very high fever, sudden severe or spreading pain). Always end_call=true for red.
- yellow: outside the expected range but not clearly urgent.
- green: within the expected recovery pattern."""


def build_triage_payload(
    *,
    patient: PatientInfo,
    utterance: str,
    transcript: list[dict[str, str]],
    followup_count: int,
    max_followups: int,
    context: ReferenceContext,
) -> str:
    payload = {
        "task": "symptom_triage",
        "input": {
            "patient": patient.to_payload(),
            "latest_patient_utterance": utterance,
            "transcript": transcript,
            "followup_count_used": int(followup_count),
            "max_followups": int(max_followups),
            "reference_context": context.to_payload(),
        },
    }
    return json.dumps(payload, sort_keys=True, ensure_ascii=False)


def build_identity_payload(answer: str) -> str:
    return json.dumps(
        {
            "task": "identity_confirmation",
            "input": {"question": IDENTITY_QUESTION, "answer": answer.strip()},
        },
        sort_keys=True,
        ensure_ascii=False,
    )
