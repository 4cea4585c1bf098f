"""Construction of codex CLI invocations.

CommandBuilder turns a prompt plus a BuildOptions bag into the ordered
argument list for ``codex``. Token order matters: global flags come
before the ``exec`` subcommand, while the local-provider flag is bound
to the subcommand and must follow it.

Only one condition is a hard failure: mutually exclusive safety
options. Everything the installed CLI cannot do (resume, native
search, extra writable dirs, ...) is dropped with a warning.
"""
from __future__ import annotations

import logging
import os
import secrets
import tempfile
from pathlib import Path

from ..shared.services.working_dir import WorkingDirResolver
from .errors import OptionConflictError
from .model_availability import ModelAvailabilityResolver
from .models import (
    BuildOptions,
    BuildResult,
    ConfigOverrides,
    ReasoningEffort,
    SandboxMode,
    enum_value,
)
from .version_probe import (
    ADD_DIR,
    NATIVE_SEARCH,
    RESUME,
    TOOL_TOKEN_LIMIT,
    VersionProbe,
)

logger = logging.getLogger(__name__)

# Prompts above this many bytes go through a temp file instead of argv.
MAX_INLINE_PROMPT_BYTES = 100_000

FLAG_MODEL = "-m"
FLAG_YOLO = "--dangerously-bypass-approvals-and-sandbox"
FLAG_FULL_AUTO = "--full-auto"
FLAG_ASK_FOR_APPROVAL = "--ask-for-approval"
FLAG_SANDBOX = "--sandbox"
FLAG_CD = "--cd"
FLAG_WORKING_DIR = "-C"
FLAG_OSS = "--oss"
FLAG_LOCAL_PROVIDER = "--local-provider"
FLAG_SEARCH = "--search"
FLAG_ENABLE = "--enable"
FLAG_DISABLE = "--disable"
FLAG_ADD_DIR = "--add-dir"
FLAG_CONFIG = "-c"
FLAG_PROFILE = "--profile"
FLAG_IMAGE = "-i"
SUBCOMMAND_EXEC = "exec"
SUBCOMMAND_RESUME = "resume"

WEB_SEARCH_FEATURE = "web_search_request"

ALLOWED_REASONING_EFFORTS = frozenset(e.value for e in ReasoningEffort)

CONCISE_PREFIX = (
    "Please provide a focused, concise response without unnecessary "
    "elaboration. "
)

CHANGE_MODE_INSTRUCTIONS = """[CHANGEMODE INSTRUCTIONS]
You are generating code modifications that will be applied by an automated
system. Output only edit blocks in the exact format below.

RULES:
1. Analyze each referenced file thoroughly before proposing changes.
2. The OLD section must match the file content EXACTLY, including whitespace.
3. The NEW section must be complete code that directly replaces OLD.
4. Emit one block per edit. Do not merge unrelated edits into one block.

OUTPUT FORMAT (follow exactly):
**FILE: [file path]:[line number]**
```
OLD:
[exact original text]
NEW:
[replacement text]
```
[END CHANGEMODE INSTRUCTIONS]

USER REQUEST:
"""


def compose_prompt(prompt: str, *, change_mode: bool = False, concise: bool = False) -> str:
    """Apply the structured-edit and brevity instructions to *prompt*."""
    final = prompt
    if change_mode:
        final = CHANGE_MODE_INSTRUCTIONS + final
    if concise:
        final = CONCISE_PREFIX + final
    return final


def cleanup_temp_file(path: str | None) -> None:
    """Remove a prompt temp file created by build(); never raises."""
    if not path:
        return
    try:
        os.unlink(path)
        logger.debug("Cleaned up temp file: %s", path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Failed to cleanup temp file %s: %s", path, exc)


class CommandBuilder:
    """Builds codex argument lists against the installed CLI's capabilities.

    The builder holds no per-build state, so one instance can serve
    concurrent builds.
    """

    def __init__(
        self,
        version_probe: VersionProbe,
        model_resolver: ModelAvailabilityResolver,
        working_dir_resolver: WorkingDirResolver | None = None,
        *,
        max_inline_prompt_bytes: int = MAX_INLINE_PROMPT_BYTES,
        temp_dir: str | None = None,
    ) -> None:
        self._version_probe = version_probe
        self._model_resolver = model_resolver
        self._working_dir_resolver = (
            working_dir_resolver if working_dir_resolver is not None
            else WorkingDirResolver()
        )
        self._max_inline_prompt_bytes = max_inline_prompt_bytes
        self._temp_dir = temp_dir

    async def build(
        self,
        prompt: str,
        options: BuildOptions | None = None,
    ) -> BuildResult:
        """Build the full argument list for one invocation.

        Raises:
            OptionConflictError: yolo combined with an explicit approval
                policy or sandbox mode.
        """
        options = options or BuildOptions()
        args: list[str] = []

        self.validate(options)
        use_resume = await self._check_resume(options)
        await self._add_model(args, options)
        self._add_safety(args, options)
        self._add_working_dir(args, options, prompt)
        deferred = self._local_provider_tokens(args, options, use_resume)
        await self._add_search_and_features(args, options)
        for feature in options.disable_features:
            args.extend([FLAG_DISABLE, feature])
        await self._add_gated_options(args, options)
        self._add_reasoning_effort(args, options)
        self._add_passthrough(args, options)

        if use_resume:
            args.extend([SUBCOMMAND_EXEC, SUBCOMMAND_RESUME, options.conversation_id])
            logger.debug(
                "Using exec resume mode with conversation id: %s",
                options.conversation_id,
            )
        else:
            args.append(SUBCOMMAND_EXEC)
        args.extend(deferred)

        final_prompt = compose_prompt(
            prompt,
            change_mode=options.change_mode,
            concise=options.concise_prompt,
        )
        temp_file = self._add_prompt(args, final_prompt, options)
        return BuildResult(
            args=args,
            final_prompt=final_prompt,
            temp_file=temp_file,
            use_resume=use_resume,
        )

    # ── steps ─────────────────────────────────────────────────

    @staticmethod
    def validate(options: BuildOptions) -> None:
        """Reject option combinations codex cannot honour.

        Raises:
            OptionConflictError: yolo combined with an explicit approval
                policy or sandbox mode.
        """
        if options.yolo and options.approval_policy:
            raise OptionConflictError("yolo", "approval_policy")
        if options.yolo and options.sandbox_mode:
            raise OptionConflictError("yolo", "sandbox_mode")

    async def _check_resume(self, options: BuildOptions) -> bool:
        if not options.conversation_id:
            return False
        if await self._version_probe.supports(RESUME):
            logger.debug("Resume mode enabled (codex CLI %s+)", RESUME)
            return True
        logger.warning(
            "Resume requested but not supported (requires %s). "
            "Falling back to a fresh exec.",
            RESUME,
        )
        return False

    async def _add_model(self, args: list[str], options: BuildOptions) -> None:
        if options.uses_local_provider:
            # Local catalogs are unknown here; pass the name through as-is.
            if options.model:
                args.extend([FLAG_MODEL, options.model])
            return

        selected = await self._model_resolver.resolve_requested(options.model)
        args.extend([FLAG_MODEL, selected])
        if options.model and options.model != selected:
            logger.warning(
                "Requested model %r not available, using fallback %r",
                options.model, selected,
            )
        else:
            logger.debug("Using model: %s", selected)

    @staticmethod
    def _add_safety(args: list[str], options: BuildOptions) -> None:
        if options.yolo:
            args.append(FLAG_YOLO)
            return
        if options.full_auto:
            if options.approval_policy or options.sandbox_mode:
                logger.warning(
                    "full_auto set; ignoring approval_policy/sandbox_mode",
                )
            args.append(FLAG_FULL_AUTO)
            return

        if options.approval_policy:
            args.extend([FLAG_ASK_FOR_APPROVAL, enum_value(options.approval_policy)])

        if options.sandbox_mode:
            args.extend([FLAG_SANDBOX, enum_value(options.sandbox_mode)])
        elif options.search or options.uses_local_provider:
            # Search and local providers need network/filesystem access.
            logger.debug("Search/local provider requested: auto-setting sandbox to workspace-write")
            args.extend([FLAG_SANDBOX, SandboxMode.WORKSPACE_WRITE.value])

    def _add_working_dir(
        self,
        args: list[str],
        options: BuildOptions,
        prompt: str,
    ) -> None:
        resolved = self._working_dir_resolver.resolve(
            working_dir=options.working_dir or options.cd,
            prompt=prompt,
        )
        if not resolved:
            return
        flag = FLAG_CD if options.cd is not None else FLAG_WORKING_DIR
        args.extend([flag, resolved])
        logger.debug("Resolved working directory: %s", resolved)

    @staticmethod
    def _local_provider_tokens(
        args: list[str],
        options: BuildOptions,
        use_resume: bool,
    ) -> list[str]:
        """Return tokens that must follow the subcommand.

        ``exec resume`` has no --oss flag, so under resume the provider
        is selected with a config override emitted right away instead.
        """
        if not options.uses_local_provider:
            return []
        provider = enum_value(options.local_provider)
        if use_resume:
            args.extend([FLAG_CONFIG, f"model_provider={provider or 'oss'}"])
            return []
        deferred = [FLAG_OSS]
        if provider:
            deferred.extend([FLAG_LOCAL_PROVIDER, provider])
        return deferred

    async def _add_search_and_features(
        self,
        args: list[str],
        options: BuildOptions,
    ) -> None:
        features = list(dict.fromkeys(options.enable_features))
        if options.search:
            if await self._version_probe.supports(NATIVE_SEARCH):
                args.append(FLAG_SEARCH)
                logger.debug("Using native --search flag (codex CLI %s+)", NATIVE_SEARCH)
            else:
                logger.debug(
                    "Native --search not supported, relying on %s feature flag",
                    WEB_SEARCH_FEATURE,
                )
            # Always sent as well: older releases only know the feature flag.
            if WEB_SEARCH_FEATURE not in features:
                features.append(WEB_SEARCH_FEATURE)
        for feature in features:
            args.extend([FLAG_ENABLE, feature])

    async def _add_gated_options(self, args: list[str], options: BuildOptions) -> None:
        if options.add_dirs:
            if await self._version_probe.supports(ADD_DIR):
                for directory in options.add_dirs:
                    args.extend([FLAG_ADD_DIR, directory])
            else:
                logger.warning(
                    "Additional directories requested but --add-dir is not "
                    "supported (requires %s). Ignoring add_dirs.",
                    ADD_DIR,
                )

        limit = options.tool_output_token_limit
        if limit is not None:
            if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
                logger.warning("Ignoring invalid tool_output_token_limit %r", limit)
            elif await self._version_probe.supports(TOOL_TOKEN_LIMIT):
                args.extend([FLAG_CONFIG, f"tool_output_token_limit={limit}"])
            else:
                logger.warning(
                    "tool_output_token_limit requested but not supported "
                    "(requires %s). Ignoring it.",
                    TOOL_TOKEN_LIMIT,
                )

    @staticmethod
    def _add_reasoning_effort(args: list[str], options: BuildOptions) -> None:
        if options.reasoning_effort is None:
            return
        effort = (enum_value(options.reasoning_effort) or "").strip().lower()
        if effort not in ALLOWED_REASONING_EFFORTS:
            logger.warning(
                "Invalid reasoning effort %r (allowed: %s); ignoring it",
                options.reasoning_effort,
                ", ".join(sorted(ALLOWED_REASONING_EFFORTS)),
            )
            return
        args.extend([FLAG_CONFIG, f'model_reasoning_effort="{effort}"'])

    @staticmethod
    def _add_passthrough(args: list[str], options: BuildOptions) -> None:
        config = options.config
        if isinstance(config, str):
            if config.strip():
                args.extend([FLAG_CONFIG, config])
        elif config:
            overrides = (
                config if isinstance(config, ConfigOverrides)
                else ConfigOverrides(config)
            )
            if overrides:
                args.extend([FLAG_CONFIG, overrides.serialize()])

        if options.profile:
            args.extend([FLAG_PROFILE, options.profile])

        for image in options.images:
            args.extend([FLAG_IMAGE, image])

    def _add_prompt(
        self,
        args: list[str],
        final_prompt: str,
        options: BuildOptions,
    ) -> str | None:
        size = len(final_prompt.encode("utf-8"))
        if not options.file_prompt_transport or size <= self._max_inline_prompt_bytes:
            args.append(final_prompt)
            return None

        directory = self._temp_dir or tempfile.gettempdir()
        path = Path(directory) / f"codex-prompt-{secrets.token_hex(8)}.txt"
        try:
            path.write_text(final_prompt, encoding="utf-8")
        except OSError as exc:
            logger.warning(
                "Failed to create temp file for large prompt: %s. "
                "Passing the prompt inline.",
                exc,
            )
            args.append(final_prompt)
            return None

        logger.debug("Prompt too long (%d bytes), using temp file: %s", size, path)
        args.append(f"@{path}")
        return str(path)
