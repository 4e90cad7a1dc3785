import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from skillmaster_core.app_config import apply_env_overrides, load_json_config, parse_app_config, resolve_runtime_env
from skillmaster_core.bootstrap import AppRuntime, bootstrap_runtime
from skillmaster_core.commands.router import CommandRouter
from skillmaster_core.conversation import TurnOutcome
from skillmaster_core.errors import SkillMasterError
from skillmaster_core.models import RoadmapRequest

_HELP_TEXT = """Commands:
  /help                                   show this help
  /new                                    start a new conversation
  /conversations [resume <id>]            list conversations, or continue one
  /usage                                  remaining tutor questions today
  /roadmap new <skill> | <level> | <goals> | <time>
  /roadmap list                           list your roadmaps
  /roadmap <id>                           show resources and exams for a roadmap
  /coach <roadmap_id> <question>          ask the coach about a roadmap
  exit                                    quit"""


def _format_remaining(remaining: int) -> str:
    return "unlimited" if remaining < 0 else str(remaining)


class TutorRepl:
    def __init__(self, runtime: AppRuntime, user_id: str):
        self._runtime = runtime
        self._user_id = user_id
        self._conversation_id: str | None = None
        self.router = CommandRouter(
            on_help=self._handle_help,
            on_new=self._handle_new,
            on_conversations=self._handle_conversations,
            on_usage=self._handle_usage,
            on_roadmap=self._handle_roadmap,
            on_coach=self._handle_coach,
            on_unknown=lambda cmd: print(f"tutor> Unknown command: {cmd}. Type /help for commands."),
        )

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    async def handle(self, user_input: str) -> None:
        if await self.router.try_handle(user_input):
            return
        outcome = await self._runtime.tutor.submit_turn(self._conversation_id, self._user_id, user_input)
        self._conversation_id = outcome.conversation_id
        self._print_outcome(outcome)

    def _print_outcome(self, outcome: TurnOutcome) -> None:
        if outcome.ok and outcome.assistant_message is not None:
            print(f"tutor> {outcome.assistant_message.content}")
        else:
            print(f"tutor> {outcome.notice}")
        print(f"       ({_format_remaining(outcome.remaining_quota)} questions left today)")

    async def _handle_help(self) -> None:
        print(_HELP_TEXT)

    async def _handle_new(self) -> None:
        self._conversation_id = None
        print("tutor> Started a new conversation.")

    async def _handle_conversations(self, command: str) -> None:
        parts = command.split()
        if len(parts) == 3 and parts[1] == "resume":
            conversation = self._runtime.tutor.get_conversation(self._user_id, parts[2])
            self._conversation_id = conversation.id
            print(f"tutor> Resumed: {conversation.title} ({len(conversation.messages)} messages)")
            return

        conversations = self._runtime.tutor.list_conversations(self._user_id)
        if not conversations:
            print("tutor> No conversations yet.")
            return
        for conversation in conversations:
            marker = "*" if conversation.id == self._conversation_id else " "
            print(f" {marker} {conversation.id}  {conversation.updated_at:%Y-%m-%d %H:%M}  {conversation.title}")

    async def _handle_usage(self) -> None:
        remaining = self._runtime.tutor.remaining_quota(self._user_id)
        print(f"tutor> {_format_remaining(remaining)} tutor questions left today.")

    async def _handle_roadmap(self, command: str) -> None:
        args = command[len("/roadmap"):].strip()
        if not args:
            print("tutor> Usage: /roadmap new <skill> | <level> | <goals> | <time>, /roadmap list, /roadmap <id>")
            return

        if args == "list":
            roadmaps = self._runtime.roadmaps.list_roadmaps(self._user_id)
            if not roadmaps:
                print("tutor> No roadmaps yet.")
            for roadmap in roadmaps:
                print(f"  {roadmap.id}  {roadmap.skill} ({roadmap.level}) {roadmap.progress}%")
            return

        if args.startswith("new"):
            fields = [f.strip() for f in args[len("new"):].split("|")]
            if len(fields) < 2 or not fields[0] or not fields[1]:
                print("tutor> Usage: /roadmap new <skill> | <level> | <goals> | <time>")
                return
            fields += [""] * (4 - len(fields))
            outcome = await self._runtime.roadmaps.create_roadmap(
                self._user_id,
                RoadmapRequest(skill=fields[0], level=fields[1], goals=fields[2], time_available=fields[3]),
            )
            if outcome.roadmap is None:
                print(f"tutor> {outcome.notice}")
                return
            print(f"tutor> Created roadmap {outcome.roadmap.id} for {outcome.roadmap.skill}.")
            args = outcome.roadmap.id

        artifacts = await self._runtime.roadmaps.get_roadmap_artifacts(args, user_id=self._user_id)
        print("Resources:")
        for item in artifacts.resources or ["(none)"]:
            print(f"  - {item}")
        print("Exams:")
        for item in artifacts.exams or ["(none)"]:
            print(f"  - {item}")
        if artifacts.unresolved:
            print(f"(could not generate {', '.join(sorted(artifacts.unresolved))}; ask again later)")

    async def _handle_coach(self, command: str) -> None:
        parts = command.split(maxsplit=2)
        if len(parts) < 3:
            print("tutor> Usage: /coach <roadmap_id> <question>")
            return
        outcome = await self._runtime.roadmaps.ask_coach(self._user_id, parts[1], parts[2])
        print(f"tutor> {outcome.reply if outcome.reply is not None else outcome.notice}")


async def main() -> None:
    load_dotenv()

    app = apply_env_overrides(parse_app_config(load_json_config()))
    env = resolve_runtime_env(app)
    if not env.provider_api_key:
        logger.error(f"{env.provider_env_var} environment variable is required.")
        sys.exit(1)

    runtime = bootstrap_runtime(app, env)
    repl = TutorRepl(runtime, app.default_user_id)

    print("skillmaster tutor (type 'exit' to quit, '/help' for commands)")
    print(f"Provider: {app.provider_name} ({app.model})")
    print(f"User: {app.default_user_id}")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            try:
                await repl.handle(trimmed)
                print()
            except (SkillMasterError, ValueError) as ex:
                print(f"tutor> {ex}\n")
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        runtime.store.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
