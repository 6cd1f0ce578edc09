"""Conversational trial finder: a Claude tool-use loop around the search pipeline."""
import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import enforce_rate_limit, get_llm_client, get_pipeline
from app.api.search import save_outcome
from app.config import get_settings
from app.database import SessionLocal
from app.pipeline.llm_client import response_text
from app.pipeline.orchestrator import SearchOutcome, TrialSearchPipeline
from app.pipeline.persistence import new_search_id
from app.schemas.requests import ChatRequest, SearchTrialsToolInput
from app.schemas.responses import ChatResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

MAX_STEPS = 3
UNAVAILABLE_REPLY = "The trial finder assistant is unavailable right now. Please try the search form instead."

SYSTEM_PROMPT = """You are a warm and knowledgeable clinical trial finder assistant helping patients and caregivers.

CONVERSATION PHASE:
- Ask friendly questions ONE AT A TIME to understand: condition, patient age, location, current medications.
- Use plain language. Be warm, patient, empathetic. No jargon.
- Think of medical synonyms for the condition to broaden the search and pass them as synonyms.
- Once you have condition + age + location, call the search_trials tool. Do not delay.

AFTER RECEIVING TRIAL RESULTS:
Each trial already carries matchScore, matchLabel and matchReason.
- Leave out "Unlikely" trials, show Strong Matches first, then Possible Matches, at most 4 trials.
- One brief sentence summarizing what you found, then ONE short sentence per trial explaining why it may fit.
- Do NOT repeat trial titles, NCT IDs, summaries or location lists; the trial cards show those.
- End with one brief sentence: eligibility is confirmed by the research team, not by this tool.

CRITICAL RULES:
- NEVER provide medical advice, diagnoses, or treatment recommendations.
- If the tool says the condition is too vague, ask the patient for the specific type or stage. Never guess a diagnosis.
- If zero trials match, say so compassionately and suggest broadening the location or asking their doctor."""

TOOL_DESCRIPTION = (
    "Search ClinicalTrials.gov for recruiting clinical trials matching the patient's condition, "
    "age, and location. Returns scored trial summaries with match labels, eligibility criteria, "
    "age ranges, locations, and links."
)

SEARCH_TRIALS_TOOL = {
    "name": "search_trials",
    "description": TOOL_DESCRIPTION,
    "input_schema": SearchTrialsToolInput.model_json_schema(),
}


def content_blocks(response) -> list[dict]:
    """Echo assistant content back as plain message params."""
    blocks = []
    for block in response.content:
        if block.type == "text":
            blocks.append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            blocks.append({"type": "tool_use", "id": block.id, "name": block.name, "input": block.input})
    return blocks


def execute_search_tool(pipeline: TrialSearchPipeline, tool_input: dict) -> tuple[dict, SearchOutcome | None]:
    try:
        args = SearchTrialsToolInput.model_validate(tool_input)
    except ValidationError as e:
        logger.info(f"search_trials called with invalid input: {e.errors()[:1]}")
        return {"error": "Invalid search input: condition and a valid age are required.", "trials": []}, None

    outcome = pipeline.run(args.to_profile(), synonyms=args.synonyms)
    return outcome.tool_result(), outcome


def run_chat(client, model: str, messages: list[dict], pipeline: TrialSearchPipeline):
    """Run up to MAX_STEPS model turns, executing search_trials calls in between."""
    tool_results = []
    last_outcome = None
    reply = ""

    for step in range(MAX_STEPS):
        response = client.messages.create(
            model=model,
            max_tokens=1500,
            system=SYSTEM_PROMPT,
            messages=messages,
            tools=[SEARCH_TRIALS_TOOL],
        )
        reply = response_text(response)
        if response.stop_reason != "tool_use":
            break

        results_blocks = []
        for block in response.content:
            if block.type != "tool_use":
                continue
            if block.name != "search_trials":
                result = {"error": f"Unknown tool {block.name}", "trials": []}
            else:
                result, outcome = execute_search_tool(pipeline, block.input)
                if outcome is not None and outcome.error is None:
                    last_outcome = outcome
            tool_results.append(result)
            results_blocks.append({
                "type": "tool_result",
                "tool_use_id": block.id,
                "content": [{"type": "text", "text": json.dumps(result)}],
            })

        messages = messages + [
            {"role": "assistant", "content": content_blocks(response)},
            {"role": "user", "content": results_blocks},
        ]
        logger.info(f"Chat step {step + 1}: executed {len(results_blocks)} tool call(s)")

    return reply, tool_results, last_outcome


def persist_chat_search(search_id: str, outcome: SearchOutcome) -> None:
    db = SessionLocal()
    try:
        save_outcome(db, outcome, mode="chat", search_id=search_id)
    except SQLAlchemyError as e:
        logger.error(f"Failed to save chat search {search_id}: {e}")
    finally:
        db.close()


@router.post(
    "/chat", response_model=ChatResponse,
    dependencies=[Depends(enforce_rate_limit("chat"))],
)
def chat(
    body: ChatRequest,
    background_tasks: BackgroundTasks,
    pipeline: TrialSearchPipeline = Depends(get_pipeline),
    llm_client=Depends(get_llm_client),
):
    if llm_client is None:
        return ChatResponse(reply=UNAVAILABLE_REPLY, toolResults=[])

    messages = [m.model_dump() for m in body.messages]
    try:
        reply, tool_results, outcome = run_chat(llm_client, get_settings().anthropic_model, messages, pipeline)
    except Exception as e:
        logger.error(f"Chat completion failed: {e}")
        return ChatResponse(reply=UNAVAILABLE_REPLY, toolResults=[])

    search_id = None
    if outcome is not None:
        # Saved after the response is sent
        search_id = new_search_id()
        background_tasks.add_task(persist_chat_search, search_id, outcome)

    return ChatResponse(reply=reply, toolResults=tool_results, searchId=search_id)
