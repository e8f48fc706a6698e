"""
Main entry point for the chatstream client.
Sends a prompt and renders the streamed response, or replays a recorded stream.
"""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from chatstream.artifacts.models import UiContext
from chatstream.artifacts.store import ArtifactStore
from chatstream.recording.event_log import StreamEventLog, replay
from config_system.config_loader import ClientConfig, ConfigLoader
from core.bus import EventBus, Topic
from core.client import ChatClient
from core.pipeline import StreamPipeline
from exceptions import ChatStreamError, ConfigValidationError, UnknownAppError
from logging_config import log_error, setup_logging


class ConsoleRenderer:
    """Prints appended text to stdout and artifacts as one-line summaries."""

    def __init__(self, bus: EventBus, out=None):
        self.out = out or sys.stdout
        bus.subscribe(Topic.MESSAGE_APPENDED, self.on_appended)
        bus.subscribe(Topic.MESSAGE_FINISHED, self.on_finished)
        bus.subscribe(Topic.ARTIFACT_CREATED, self.on_artifact)

    def on_appended(self, delta: str) -> None:
        self.out.write(delta)
        self.out.flush()

    def on_finished(self, message) -> None:
        self.out.write("\n")
        self.out.flush()

    def on_artifact(self, artifact) -> None:
        self.out.write(f"[{artifact.app_icon} {artifact.title}] {artifact.generated_content.content[:80]}\n")


def build_pipeline(config: ClientConfig, ui_context: UiContext,
                   record: bool = False) -> StreamPipeline:
    recorder = None
    if record or config.recording.enabled:
        recorder = StreamEventLog(Path(config.recording.directory), config.session.session_id)
    return StreamPipeline(
        artifact_store=ArtifactStore(config.artifacts.persist_directory),
        ui_context_provider=lambda: ui_context,
        recorder=recorder,
    )


async def run_prompt(config: ClientConfig, pipeline: StreamPipeline, text: str,
                     template_parameters: Optional[dict] = None) -> str:
    async with ChatClient(config, pipeline) as client:
        return await client.send_prompt(text, {"template_parameters": template_parameters or {}})


def main():
    """Main function to run the client with CLI arguments."""
    try:
        parser = argparse.ArgumentParser(
            description='chatstream - streaming chat client core'
        )
        parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            help='Set the logging level (default: INFO, can also be set via CHATSTREAM_LOG_LEVEL env var)'
        )
        parser.add_argument(
            '--verbose', '-v',
            action='store_true',
            help='Enable verbose logging (equivalent to --log-level DEBUG)'
        )
        parser.add_argument(
            '--config-root',
            default='./config',
            help='Path to configuration directory (default: ./config)'
        )
        parser.add_argument(
            '--app',
            help='Active app id in the sidebar (e.g. dream, omni, assistant)'
        )
        parser.add_argument(
            '--sidebar',
            action='store_true',
            help='Treat the app sidebar as visible'
        )

        subparsers = parser.add_subparsers(dest="command", required=True)

        prompt_parser = subparsers.add_parser("prompt", help="Send a prompt and stream the answer")
        prompt_parser.add_argument("text", help="Prompt text")
        prompt_parser.add_argument("--record", action="store_true", help="Record classified events as JSONL")

        replay_parser = subparsers.add_parser("replay", help="Replay a recorded event stream")
        replay_parser.add_argument("recording", help="Path to a .events.jsonl recording")

        args = parser.parse_args()

        config = ConfigLoader(args.config_root).load_client_config()
        client_logger = setup_logging(
            log_level=args.log_level,
            verbose=args.verbose,
            config_log_level=config.log_level,
        )
        logger = client_logger.get_logger("main")

        ui_context = UiContext(
            active_app_id=args.app,
            sidebar_visible=args.sidebar,
            triggering_user_input=getattr(args, "text", None),
        )

        if args.command == "prompt":
            pipeline = build_pipeline(config, ui_context, record=args.record)
            ConsoleRenderer(pipeline.bus)
            request_id = asyncio.run(run_prompt(config, pipeline, args.text))
            logger.info("Prompt completed", extra={
                "component": "Main",
                "data": {"request_id": request_id, "artifacts": len(pipeline.artifact_store.artifacts)}
            })
        elif args.command == "replay":
            recording = Path(args.recording)
            if not recording.exists():
                raise ChatStreamError(f"Recording '{recording}' not found.")
            pipeline = build_pipeline(config, ui_context)
            pipeline.recorder = None
            ConsoleRenderer(pipeline.bus)
            applied = replay(StreamEventLog.from_file(recording).read_all(), pipeline)
            logger.info("Replay completed", extra={
                "component": "Main",
                "data": {"events": applied, "tasks": pipeline.task_registry.counts()}
            })

    except (ConfigValidationError, UnknownAppError) as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ChatStreamError as e:
        if 'logger' in locals():
            log_error(logger, f"Client error: {str(e)}", "Main", e)
        else:
            print(f"Client Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        if 'logger' in locals():
            log_error(logger, f"Unexpected error: {str(e)}", "Main", e)
        else:
            print(f"Unexpected Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
