"""Two-stage compile pipeline turning a batch into cached artifacts.

Stage one compiles the batch source with the preview package; stage two
extracts one image per page. Both stages are spawned through a
:class:`~texpreview.adapters.latex.engines.ProcessRunner` and report back via
callbacks on the cooperative scheduler. Output filters recognise finished
fragments while the processes are still running, so artifacts are cached and
displayed progressively in submission order.

Once both stages are done the outcome is either :class:`StageSuccess` or
:class:`StageFailure`, each consumed by a fixed sequence of handlers.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
from pathlib import Path
import shutil
import tempfile
import time
from typing import Any

from PIL import Image

from texpreview.adapters.latex.engines import (
    Backend,
    CompileFilter,
    LineBuffer,
    OutputFilter,
    PageReport,
    ProcessHandle,
    ProcessRunner,
    SnippetReport,
    ToolchainLogParser,
    ToolchainMessage,
    build_preview_env,
    expand_command,
    missing_executables,
)
from texpreview.adapters.latex.engines.filters import (
    SCALED_POINTS_PER_POINT,
    TEX_POINTS_PER_INCH,
)
from texpreview.adapters.latex.source import BatchSourceWriter

from .batches import Batch, DeliverCallback
from .cache import Artifact, ArtifactCache, CacheTier, Geometry
from .config import PreviewConfig
from .diagnostics import DiagnosticEmitter, NullEmitter
from .exceptions import CompileError, FragmentError, ToolchainMissingError, TruncatedBatchError
from .scheduling import Scheduler, TimerHandle


_log = logging.getLogger(__name__)

VISIBILITY_TIMEOUT = 1.0
VISIBILITY_INTERVAL = 0.01

FinishHook = Callable[[int | None, Path | None, "RunState"], None]
ResubmitCallback = Callable[[Batch, int], Any]


@dataclass(frozen=True, slots=True)
class StageSuccess:
    """Both stages completed; ``artifacts`` maps batch indices to results."""

    artifacts: dict[int, Artifact]


@dataclass(frozen=True, slots=True)
class StageFailure:
    """A stage exited with a non-nominal status."""

    stage: str
    returncode: int | None
    log_path: Path | None


StageOutcome = StageSuccess | StageFailure


@dataclass(slots=True, eq=False)
class RunState:
    """Mutable record of one pipeline run."""

    batch: Batch
    workdir: Path
    basename: str
    tier: CacheTier
    remaining: list[int] = field(default_factory=list)
    artifacts: dict[int, Artifact] = field(default_factory=dict)
    errors: dict[int, str] = field(default_factory=dict)
    geometry: dict[int, SnippetReport] = field(default_factory=dict)
    transcript: list[str] = field(default_factory=list)
    messages: list[ToolchainMessage] = field(default_factory=list)
    resubmitted: list[int] = field(default_factory=list)
    compile_code: int | None = None
    extract_code: int | None = None
    started: float = 0.0
    finished: float | None = None
    outcome: StageOutcome | None = None
    kept: bool = False

    @property
    def source_path(self) -> Path:
        return self.workdir / f"{self.basename}.tex"

    @property
    def log_path(self) -> Path:
        return self.workdir / f"{self.basename}.log"

    @property
    def duration(self) -> float:
        if self.finished is None:
            return 0.0
        return max(self.finished - self.started, 0.0)

    @property
    def exit_code(self) -> int | None:
        if isinstance(self.outcome, StageFailure):
            return self.outcome.returncode
        return self.extract_code

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, StageSuccess)


@dataclass(slots=True, eq=False)
class _Run:
    state: RunState
    compile_filter: CompileFilter
    output_filter: OutputFilter
    parser: ToolchainLogParser
    intermediate: Path
    follow: bool
    compile_lines: LineBuffer = field(default_factory=LineBuffer)
    extract_lines: LineBuffer = field(default_factory=LineBuffer)
    compile_handle: ProcessHandle | None = None
    extract_handle: ProcessHandle | None = None
    compile_done: bool = False
    extract_started: bool = False
    extract_done: bool = False
    finalized: bool = False


def wait_for_file(
    path: Path,
    *,
    timeout: float = VISIBILITY_TIMEOUT,
    interval: float = VISIBILITY_INTERVAL,
) -> bool:
    """Poll until ``path`` exists; give up quietly after ``timeout`` seconds."""
    deadline = time.monotonic() + timeout
    while True:
        if path.exists():
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(interval)


def image_size(path: Path) -> tuple[int, int] | None:
    """Return the pixel size of a raster image, or ``None`` when unreadable."""
    try:
        with Image.open(path) as image:
            return image.size
    except OSError:
        return None


class CompilePipeline:
    """Run batches through the backend's two toolchain stages."""

    def __init__(
        self,
        backend: Backend,
        cache: ArtifactCache,
        *,
        scheduler: Scheduler,
        runner: ProcessRunner,
        config: PreviewConfig | None = None,
        deliver: DeliverCallback | None = None,
        resubmit: ResubmitCallback | None = None,
        writer: BatchSourceWriter | None = None,
        emitter: DiagnosticEmitter | None = None,
        document_dir: Path | None = None,
        work_root: Path | None = None,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.scheduler = scheduler
        self.runner = runner
        self.config = config or PreviewConfig()
        self.deliver = deliver or (lambda delivery: None)
        self.resubmit = resubmit
        self.writer = writer or BatchSourceWriter()
        self.emitter = emitter or NullEmitter()
        self.document_dir = document_dir
        self.work_root = work_root
        self.finish_hooks: list[FinishHook] = []
        self._cleanups: dict[int, tuple[TimerHandle, RunState]] = {}
        self._active: dict[int, _Run] = {}

    # ---------------------------------------------------------------- commands

    @property
    def compile_template(self) -> tuple[str, ...]:
        override = self.config.commands.get("compile")
        return tuple(override) if override else self.backend.compile_template

    @property
    def extract_template(self) -> tuple[str, ...]:
        override = self.config.commands.get("extract")
        return tuple(override) if override else self.backend.extract_template

    def ensure_toolchain(self) -> None:
        """Raise :class:`ToolchainMissingError` when a stage executable is absent."""
        missing = missing_executables((self.compile_template, self.extract_template))
        if missing:
            raise ToolchainMissingError(missing, backend=self.backend.name)

    def add_finish_hook(self, hook: FinishHook) -> None:
        self.finish_hooks.append(hook)

    @property
    def active(self) -> int:
        return len(self._active)

    # --------------------------------------------------------------------- run

    def run(self, batch: Batch) -> RunState:
        """Start compiling ``batch``; results arrive through the callbacks."""
        if self.work_root is not None:
            self.work_root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="texpreview-run-", dir=self.work_root))
        basename = f"batch{batch.id}"
        state = RunState(
            batch=batch,
            workdir=workdir,
            basename=basename,
            tier=batch.tier,
            remaining=list(range(len(batch))),
            started=self.scheduler.time(),
        )
        self.writer.write(state.source_path, batch.fragments, batch.appearance)
        run = _Run(
            state=state,
            compile_filter=CompileFilter(),
            output_filter=self.backend.make_filter(workdir, basename, self.config.resolution),
            parser=ToolchainLogParser(),
            intermediate=workdir / f"{basename}{self.backend.intermediate_suffix}",
            follow=self.backend.follow and self.runner.concurrent,
        )
        self._active[batch.id] = run
        self.emitter.event(
            "preview_build",
            {"count": len(batch), "backend": self.backend.name, "generation": batch.generation},
        )
        argv = expand_command(self.compile_template, self._values(state))
        _log.debug("compiling batch %d: %s", batch.id, " ".join(argv))
        run.compile_handle = self.runner.spawn(
            argv,
            cwd=workdir,
            env=build_preview_env(self.document_dir),
            on_output=lambda chunk: self._on_compile_output(run, chunk),
            on_exit=lambda code: self._on_compile_exit(run, code),
        )
        return state

    def _values(self, state: RunState) -> dict[str, object]:
        return {
            "source": state.source_path.name,
            "basename": state.basename,
            "intermediate": f"{state.basename}{self.backend.intermediate_suffix}",
            "output": self.backend.output_pattern(state.basename),
            "resolution": self.config.resolution,
            "workdir": str(state.workdir),
        }

    # ------------------------------------------------------------ stage one

    def _on_compile_output(self, run: _Run, chunk: str) -> None:
        for line in run.compile_lines.feed(chunk):
            self._compile_line(run, line)
        if run.follow:
            self._maybe_follow(run)

    def _compile_line(self, run: _Run, line: str) -> None:
        state = run.state
        state.transcript.append(line.rstrip("\r\n"))
        run.parser.process_line(line)
        for snippet in run.compile_filter.feed(line):
            index = snippet.index - 1
            state.geometry[index] = snippet
            if snippet.error:
                state.errors[index] = snippet.error

    def _maybe_follow(self, run: _Run) -> None:
        if run.extract_started or run.finalized:
            return
        if run.compile_filter.completed and run.intermediate.exists():
            self._start_extract(run)

    def _on_compile_exit(self, run: _Run, returncode: int) -> None:
        for line in run.compile_lines.flush():
            self._compile_line(run, line)
        state = run.state
        state.compile_code = returncode
        if run.finalized:
            return
        nominal = self.backend.compile_succeeded(
            returncode, markers_seen=run.compile_filter.markers_seen
        )
        if not nominal or not run.intermediate.exists():
            if run.extract_handle is not None:
                run.extract_handle.kill()
            self._finalize(run, StageFailure("compile", returncode, self._log_ref(state)))
            return
        run.compile_done = True
        if not run.extract_started:
            self._start_extract(run)
        elif run.extract_done:
            self._finalize(run, StageSuccess(dict(state.artifacts)))

    # ------------------------------------------------------------ stage two

    def _start_extract(self, run: _Run) -> None:
        run.extract_started = True
        state = run.state
        argv = expand_command(self.extract_template, self._values(state))
        _log.debug("extracting batch %d: %s", state.batch.id, " ".join(argv))
        run.extract_handle = self.runner.spawn(
            argv,
            cwd=state.workdir,
            env=build_preview_env(self.document_dir),
            on_output=lambda chunk: self._on_extract_output(run, chunk),
            on_exit=lambda code: self._on_extract_exit(run, code),
        )

    def _on_extract_output(self, run: _Run, chunk: str) -> None:
        lines = run.extract_lines.feed(chunk)
        self._record_lines(run, lines)
        self._feed_output_filter(run, [chunk] if run.output_filter.partial_lines else lines)

    def _record_lines(self, run: _Run, lines: list[str]) -> None:
        for line in lines:
            run.state.transcript.append(line.rstrip("\r\n"))
            run.parser.process_line(line)

    def _feed_output_filter(self, run: _Run, pieces: list[str]) -> None:
        if run.finalized:
            return
        for piece in pieces:
            for report in run.output_filter.feed(piece):
                self._attach(run, report)

    def _on_extract_exit(self, run: _Run, returncode: int) -> None:
        lines = run.extract_lines.flush()
        self._record_lines(run, lines)
        if not run.output_filter.partial_lines:
            self._feed_output_filter(run, lines)
        state = run.state
        state.extract_code = returncode
        if run.finalized:
            return
        for report in run.output_filter.finish():
            self._attach(run, report)
        run.extract_done = True
        if returncode != 0 and not state.artifacts:
            self._finalize(run, StageFailure("extract", returncode, self._log_ref(state)))
        elif run.compile_done:
            self._finalize(run, StageSuccess(dict(state.artifacts)))

    def _attach(self, run: _Run, report: PageReport) -> None:
        state = run.state
        batch = state.batch
        index = report.page - 1
        if not 0 <= index < len(batch) or index in state.artifacts:
            return
        if not wait_for_file(report.path):
            _log.debug("image %s not visible after %.1fs", report.path, VISIBILITY_TIMEOUT)
        geometry = self._geometry(run, index, report)
        artifact = self.cache.store(batch.keys[index], report.path, geometry, state.tier)
        if artifact is None:
            return
        state.artifacts[index] = artifact
        if index in state.remaining:
            state.remaining.remove(index)
        self.deliver(batch.delivery(index, artifact, artifact.error))

    def _geometry(self, run: _Run, index: int, report: PageReport) -> Geometry:
        resolution = self.config.resolution
        font_size = run.compile_filter.font_size or self.config.font_size
        snippet = run.state.geometry.get(index)

        width, height = report.width, report.height
        if width is None or height is None:
            size = image_size(report.path)
            if size is not None:
                width, height = size
        if (width is None or height is None) and snippet is not None:
            width = _sp_to_pixels(snippet.width, resolution)
            height = _sp_to_pixels(
                (snippet.height or 0) + (snippet.depth or 0), resolution
            )

        if report.depth is not None:
            depth = report.depth * TEX_POINTS_PER_INCH / (resolution * font_size)
        elif snippet is not None and snippet.depth is not None:
            depth = snippet.depth / SCALED_POINTS_PER_POINT / font_size
        else:
            depth = 0.0

        return Geometry(
            width=width or 0,
            height=height or 0,
            depth=round(depth, 4),
            error=run.state.errors.get(index),
        )

    @staticmethod
    def _log_ref(state: RunState) -> Path | None:
        return state.log_path if state.log_path.exists() else None

    # --------------------------------------------------------------- outcome

    def _finalize(self, run: _Run, outcome: StageOutcome) -> None:
        run.finalized = True
        state = run.state
        state.outcome = outcome
        state.finished = self.scheduler.time()
        run.parser.finalize()
        state.messages = list(run.parser.messages)
        self._active.pop(state.batch.id, None)
        handlers = (
            self._SUCCESS_HANDLERS if isinstance(outcome, StageSuccess) else self._FAILURE_HANDLERS
        )
        for handler in handlers:
            handler(self, run, outcome)

    def _report_fragment_errors(self, run: _Run, outcome: StageOutcome) -> None:
        state = run.state
        for index in sorted(state.errors):
            if index not in state.artifacts:
                continue
            error = FragmentError(state.errors[index].splitlines()[0], index=index + 1)
            self.emitter.event("fragment_error", {"index": error.index, "summary": str(error)})

    def _verify_completeness(self, run: _Run, outcome: StageOutcome) -> None:
        state = run.state
        batch = state.batch
        if not state.remaining:
            return
        first = min(state.remaining)
        self.cache.remove(batch.keys[first], state.tier)
        message = state.errors.get(first) or "no output produced"
        state.errors[first] = message
        state.remaining.remove(first)
        self.deliver(batch.delivery(first, None, message))

        later = list(range(first + 1, len(batch)))
        if not later:
            return
        if self.resubmit is None or batch.generation >= self.config.max_resubmissions:
            error = TruncatedBatchError(
                f"Fragment #{first + 1} produced no output; "
                f"abandoning {len(later)} later fragment(s)",
                failed_index=first + 1,
                remaining=len(later),
            )
            self.emitter.warning(str(error))
            for index in later:
                if index in state.artifacts:
                    continue
                state.errors[index] = "abandoned after truncated batch"
                self.deliver(batch.delivery(index, None, state.errors[index]))
            state.remaining = []
            return
        self.emitter.event(
            "batch_resubmitted", {"failed_index": first + 1, "remaining": len(later)}
        )
        state.resubmitted = later
        state.remaining = []
        self.resubmit(batch, first + 1)

    def _clear_in_flight(self, run: _Run, outcome: StageOutcome) -> None:
        state = run.state
        for index in list(state.remaining):
            state.errors.setdefault(index, "compilation failed")
            self.deliver(state.batch.delivery(index, None, state.errors[index]))
        state.remaining = []

    def _surface_log(self, run: _Run, outcome: StageOutcome) -> None:
        if not isinstance(outcome, StageFailure):
            return
        errors = run.parser.errors()
        detail = f": {errors[0].summary}" if errors else ""
        error = CompileError(
            f"{outcome.stage.capitalize()} stage exited with status {outcome.returncode}{detail}",
            returncode=outcome.returncode,
            log_path=outcome.log_path,
        )
        self.emitter.event(
            "compile_failed",
            {"returncode": error.returncode, "log": str(error.log_path or run.state.workdir)},
        )
        self.emitter.error(str(error))

    def _schedule_cleanup(self, run: _Run, outcome: StageOutcome) -> None:
        state = run.state
        if self.config.debug or state.errors or isinstance(outcome, StageFailure):
            state.kept = True
            _log.info("keeping %s for inspection", state.workdir)
            return
        handle = self.scheduler.call_later(self.config.cleanup_delay, self._cleanup, state)
        self._cleanups[state.batch.id] = (handle, state)

    def _run_finish_hooks(self, run: _Run, outcome: StageOutcome) -> None:
        state = run.state
        for hook in list(self.finish_hooks):
            hook(state.exit_code, self._log_ref(state), state)

    _SUCCESS_HANDLERS: tuple[Callable[[CompilePipeline, _Run, StageOutcome], None], ...] = (
        _report_fragment_errors,
        _verify_completeness,
        _schedule_cleanup,
        _run_finish_hooks,
    )
    _FAILURE_HANDLERS: tuple[Callable[[CompilePipeline, _Run, StageOutcome], None], ...] = (
        _clear_in_flight,
        _surface_log,
        _schedule_cleanup,
        _run_finish_hooks,
    )

    # --------------------------------------------------------------- cleanup

    def _cleanup(self, state: RunState) -> None:
        self._cleanups.pop(state.batch.id, None)
        shutil.rmtree(state.workdir, ignore_errors=True)
        _log.debug("removed work directory %s", state.workdir)

    def flush_cleanups(self) -> int:
        """Run every scheduled cleanup now; return how many ran."""
        pending = list(self._cleanups.values())
        for handle, state in pending:
            handle.cancel()
            self._cleanup(state)
        return len(pending)


def _sp_to_pixels(value: int | None, resolution: int) -> int | None:
    if value is None:
        return None
    return round(value / SCALED_POINTS_PER_POINT * resolution / TEX_POINTS_PER_INCH)


__all__ = [
    "CompilePipeline",
    "FinishHook",
    "RunState",
    "StageFailure",
    "StageOutcome",
    "StageSuccess",
    "image_size",
    "wait_for_file",
]
