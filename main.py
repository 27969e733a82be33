"""
Console Harness for SurveyOrchestrator

Runs one adaptive survey session end to end in the terminal.

Usage:
    python main.py [survey_type]

Environment:
    SURVEY_LLM_MODEL        Extraction model (default Mistral-7B-Instruct)
    SURVEY_EMBEDDING_MODEL  Embedding model (default all-MiniLM-L6-v2)
    SURVEY_DEVICE           "cuda" or "cpu" (default cuda)
    SURVEY_MAX_TURNS, SURVEY_MIN_COVERAGE, DISABLE_SEMANTIC_DEDUP
"""

import logging
import os
import sys

from survey_engine.config import EngineConfig, SurveyType
from survey_engine.core.orchestrator import SurveyOrchestrator
from survey_engine.core.slot_extractor import LLMSlotExtractor
from survey_engine.core.slot_schema import load_schema
from survey_engine.core.template_catalog import TemplateCatalog
from survey_engine.persistence import SessionPersistence
from survey_engine.results import SurveyComplete
from survey_engine.utils.embedding_client import DEFAULT_EMBEDDING_MODEL, HuggingFaceEmbedder
from survey_engine.utils.hf_client import HuggingFaceClient

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"quit", "exit", "stop"}


def print_separator(char="=", length=60):
    print(char * length)


def print_status(orchestrator, state):
    status = orchestrator.get_status(state)
    print("-" * 60)
    print(f"Coverage: {status.coverage:.0%} (weighted {status.weighted_coverage:.0%}), "
          f"fatigue {status.fatigue:.2f}, questions {status.total_questions}")
    print(f"Ready: {sorted(status.ready_slots)}")
    print(f"Missing: {status.missing_slots}")
    print("-" * 60)


def read_answer():
    """Prompt until a non-empty answer; None on exit command or Ctrl+C"""
    while True:
        try:
            answer = input("> ").strip()
        except KeyboardInterrupt:
            return None
        if answer.lower() in EXIT_COMMANDS:
            return None
        if answer:
            return answer
        print("Please enter a response.\n")


def main():
    survey_type = SurveyType.parse(sys.argv[1]) if len(sys.argv) > 1 else SurveyType.GENERAL
    device = os.environ.get("SURVEY_DEVICE", "cuda")

    print_separator()
    print("ADAPTIVE SURVEY - CONSOLE SESSION")
    print_separator()
    print("\nInitializing modules (this may take 30 seconds)...")

    try:
        config = EngineConfig.from_env()
        schema = load_schema("data/slot_schema.json")
        catalog = TemplateCatalog.from_file("data/question_templates.json", schema, config.templates)

        hf_client = HuggingFaceClient(
            model_name=os.environ.get("SURVEY_LLM_MODEL", "mistralai/Mistral-7B-Instruct-v0.2"),
            load_in_4bit=device == "cuda",
            device=device
        )
        embedder = HuggingFaceEmbedder(
            os.environ.get("SURVEY_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            device=device
        )

        orchestrator = SurveyOrchestrator(
            schema, catalog,
            extractor=LLMSlotExtractor(hf_client),
            embedder=embedder,
            config=config
        )
        persistence = SessionPersistence()
        logger.info(f"Model info: {hf_client.get_model_info()}")

    except Exception as e:
        logger.exception(f"Failed to initialize: {e}")
        return 1

    state = orchestrator.start_session(survey_type=survey_type)
    print(f"\nSession {state.session_id} ({survey_type.value})")
    print("Type 'quit', 'exit', or 'stop' to end early\n")

    result = orchestrator.next_question(state)

    while True:
        state = result.state
        persistence.save_turn(state)

        if isinstance(result, SurveyComplete):
            print_separator()
            print(f"SURVEY COMPLETE ({result.reason})")
            print_separator()
            for slot_name, value in result.ready_slots.items():
                print(f"  {slot_name}: {value}")
            break

        print(f"\nSystem: {result.text}\n")

        answer = read_answer()
        if answer is None:
            print("\nSession ended early")
            break

        state = orchestrator.ingest_answer(state, result.question_id, answer)
        print_status(orchestrator, state)
        result = orchestrator.next_question(state)

    print_separator()
    print("Console session complete")
    print_separator()
    return 0


if __name__ == '__main__':
    sys.exit(main())
