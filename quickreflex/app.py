"""Pygame host shell for the QuickReflex tap test.

The shell only turns key/mouse input into engine calls and draws snapshots.
Timing, validity, statistics and ranking live in the quickreflex core modules.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from typing import Protocol

import pygame

from .clock import RealClock
from .config import ReactionConfig, default_db_path, load_config
from .models import TrialState
from .results import ResultReport, build_result_report
from .store import InMemorySessionStore, SessionStore, SqliteSessionStore
from .trial import TrialEngine, build_tap_test

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 120

BG_IDLE = (10, 10, 14)
BG_WAITING = (170, 20, 20)
BG_READY = (20, 170, 60)
TEXT_MAIN = (255, 255, 255)
TEXT_MUTED = (200, 200, 200)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


class App:
    def __init__(self, surface: pygame.Surface) -> None:
        self._surface = surface
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    def replace(self, screen: Screen) -> None:
        if self._screens:
            self._screens[-1] = screen
        else:
            self._screens.append(screen)

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


class TapTestScreen:
    """Space / click taps, P pauses, S stops, Esc aborts (or leaves when idle)."""

    def __init__(
        self,
        app: App,
        *,
        engine_factory: Callable[[], TrialEngine],
        on_finished: Callable[[TrialEngine], None],
    ) -> None:
        self._app = app
        self._engine = engine_factory()
        self._on_finished = on_finished
        self._reported = False
        self._big_font = pygame.font.Font(None, 72)
        self._small_font = pygame.font.Font(None, 26)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.MOUSEBUTTONDOWN:
            self._engine.tap()
            return
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_SPACE, pygame.K_RETURN):
            self._engine.tap()
        elif event.key == pygame.K_p:
            if self._engine.paused:
                self._engine.resume()
            else:
                self._engine.pause()
        elif event.key == pygame.K_s:
            self._engine.stop()
        elif event.key == pygame.K_ESCAPE:
            if self._engine.can_exit():
                self._app.quit()
            else:
                self._engine.abort()

    def render(self, surface: pygame.Surface) -> None:
        self._engine.update()
        if self._engine.finished and not self._reported:
            self._reported = True
            self._on_finished(self._engine)
            return

        snap = self._engine.snapshot()
        if snap.paused:
            bg = BG_IDLE
        elif snap.state is TrialState.WAITING:
            bg = BG_WAITING
        elif snap.stimulus_visible:
            bg = BG_READY
        else:
            bg = BG_IDLE
        surface.fill(bg)

        w, h = surface.get_size()
        prompt = self._big_font.render(snap.prompt, True, TEXT_MAIN)
        surface.blit(prompt, prompt.get_rect(center=(w // 2, h // 2)))

        progress = self._small_font.render(
            f"{snap.recorded_attempts}/{snap.total_rounds}", True, TEXT_MUTED
        )
        surface.blit(progress, (24, 20))
        if snap.last_attempt is not None:
            last = snap.last_attempt
            text = f"{last.reaction_time_ms}ms" if last.is_valid else "invalid"
            label = self._small_font.render(f"Last: {text}", True, TEXT_MUTED)
            surface.blit(label, (24, h - 44))


class ResultScreen:
    def __init__(self, app: App, *, report: ResultReport, on_again: Callable[[], None]) -> None:
        self._app = app
        self._report = report
        self._on_again = on_again
        self._title_font = pygame.font.Font(None, 52)
        self._line_font = pygame.font.Font(None, 30)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_RETURN, pygame.K_SPACE):
            self._on_again()
        elif event.key == pygame.K_ESCAPE:
            self._app.quit()

    def lines(self) -> list[str]:
        r = self._report
        stats = r.session.statistics
        out = [
            f"Average: {stats.average_time_ms}ms",
            f"Best: {stats.best_time_ms}ms   Worst: {stats.worst_time_ms}ms",
            f"Valid: {stats.valid_attempts}/{stats.total_attempts} ({r.accuracy_pct}%)",
            f"Rating: {r.rating.value}",
        ]
        if r.personal_best_ms is not None:
            out.append(f"Personal best: {r.personal_best_ms}ms" + ("  NEW RECORD!" if r.is_new_record else ""))
        if r.insights:
            out.append("Insights: " + ", ".join(i.key.value for i in r.insights))
        out.append("Enter: play again   Esc: quit")
        return out

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(BG_IDLE)
        title = "Session failed" if self._report.session.is_failed else "Results"
        surface.blit(self._title_font.render(title, True, TEXT_MAIN), (40, 36))
        y = 110
        for line in self.lines():
            surface.blit(self._line_font.render(line, True, TEXT_MUTED), (40, y))
            y += 40


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def _open_store() -> SessionStore:
    try:
        path = default_db_path()
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        logger.warning("session database unavailable; history kept in memory only", exc_info=True)
        return InMemorySessionStore()
    return SqliteSessionStore(path)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    config: ReactionConfig | None = None,
    store: SessionStore | None = None,
) -> int:
    pygame.init()
    pygame.display.set_caption("QuickReflex")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    clock = pygame.time.Clock()

    app = App(surface=surface)
    real_clock = RealClock()
    cfg = config or load_config()
    session_store = store if store is not None else _open_store()

    def show_results(engine: TrialEngine) -> None:
        session = engine.session
        if session is None:
            app.quit()
            return
        report = build_result_report(session, session_store)
        app.replace(ResultScreen(app, report=report, on_again=open_tap_test))

    def open_tap_test() -> None:
        seed = _new_seed()
        app.replace(
            TapTestScreen(
                app,
                engine_factory=lambda: build_tap_test(clock=real_clock, seed=seed, config=cfg, store=session_store),
                on_finished=show_results,
            )
        )

    open_tap_test()

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        pygame.quit()

    return 0
