"""
pygame front end for the graphical-perception experiment.

Intro:  type a participant ID, Enter to start.
Trial:  estimate what percentage the smaller marked bar is of the larger,
        type 0–100, Enter to submit.
End:    per-condition summary; the CSV is written to export_dir.
        C copies the CSV to the clipboard, R resets for the next
        participant, Q or Escape quits.
"""

import logging

import pygame
import pygame.freetype

from . import grading
from .analysis import format_summary
from .config import CONFIG
from .data import generate_trial_data
from .errors import GenerationError
from .experiment import ExperimentController
from .storage import JsonFileBackend, RecordStore
from .viz import default_renderers

logger = logging.getLogger(__name__)

MAX_INPUT_LEN = 32


class PygameView:
    """Presenter backed by a pygame window; regions are plain attributes."""

    def __init__(self, config: dict):
        self.config = config
        self.screen = pygame.display.set_mode(
            (config["screen_width"], config["screen_height"])
        )
        pygame.display.set_caption("Graphical Perception Experiment")

        size = config.get("chart_size", 420)
        self.viz_container = pygame.Surface((size, size))
        self.viz_container.fill(config["bg_color"])

        self.font_title = pygame.freetype.SysFont("Arial", config["font_size_title"])
        self.font_text = pygame.freetype.SysFont("Arial", config["font_size_text"])
        self.font_small = pygame.freetype.SysFont("Arial", config["font_size_small"])

        self.current_screen = "intro"
        self.participant_input = ""
        self.response_input = ""
        self.error_text = ""
        self.label_text = ""
        self.counter_text = ""
        self.csv_output = ""
        self.summary_text = ""
        self.export_path = None
        self.copy_status = ""

    # ── presenter interface ───────────────────────────────────────────────

    def show_screen(self, name: str) -> None:
        self.current_screen = name

    def read_response_input(self) -> str:
        return self.response_input

    def clear_response_input(self) -> None:
        self.response_input = ""

    def write_error(self, text: str) -> None:
        self.error_text = text

    def write_label(self, text: str) -> None:
        self.label_text = text

    def write_counter(self, text: str) -> None:
        self.counter_text = text

    def write_csv_output(self, text: str) -> None:
        self.csv_output = text

    def csv_preview(self, max_rows: int = 3, width: int = 100) -> list[str]:
        """Record count, header and the first rows of the CSV box."""
        lines = self.csv_output.split("\n") if self.csv_output else []
        if not lines:
            return ["CSV: no records"]
        preview = [f"CSV: {len(lines) - 1} record(s)"]
        for line in lines[:max_rows + 1]:
            preview.append(line if len(line) <= width else line[:width - 1] + "…")
        if len(lines) > max_rows + 1:
            preview.append("…")
        return preview

    # ── drawing helpers ───────────────────────────────────────────────────

    def _blit_centered(self, font, text: str, color, y: int) -> pygame.Rect:
        surf, rect = font.render(text, fgcolor=color)
        rect.midtop = (self.screen.get_width() // 2, y)
        self.screen.blit(surf, rect)
        return rect

    def _draw_input_box(self, text: str, y: int) -> None:
        w, h = 260, 40
        x = (self.screen.get_width() - w) // 2
        rect = pygame.Rect(x, y, w, h)
        pygame.draw.rect(self.screen, (255, 255, 255), rect, border_radius=6)
        pygame.draw.rect(self.screen, self.config["accent_color"], rect, 2, border_radius=6)
        surf, text_rect = self.font_text.render(text + "|", fgcolor=self.config["text_color"])
        text_rect.midleft = (x + 10, y + h // 2)
        self.screen.blit(surf, text_rect)

    def draw(self) -> None:
        cfg = self.config
        self.screen.fill(cfg["bg_color"])
        text_color = cfg["text_color"]

        if self.current_screen == "intro":
            self._blit_centered(self.font_title, "Graphical Perception Experiment",
                                cfg["accent_color"], 120)
            self._blit_centered(
                self.font_text,
                "Two bars are marked with a dot. Estimate what percentage",
                text_color, 200)
            self._blit_centered(
                self.font_text, "the smaller marked bar is of the larger one.",
                text_color, 230)
            self._blit_centered(self.font_text, "Participant ID:", text_color, 300)
            self._draw_input_box(self.participant_input, 335)
            self._blit_centered(self.font_small, "Press ENTER to start",
                                text_color, 390)

        elif self.current_screen in ("trial", "response"):
            self._blit_centered(self.font_small, self.counter_text, text_color, 16)
            self._blit_centered(self.font_text, self.label_text, cfg["accent_color"], 40)
            chart_rect = self.viz_container.get_rect(midtop=(self.screen.get_width() // 2, 75))
            self.screen.blit(self.viz_container, chart_rect)
            y = chart_rect.bottom + 12
            self._blit_centered(
                self.font_small,
                "What percentage is the smaller marked bar of the larger? (0–100)",
                text_color, y)
            self._draw_input_box(self.response_input, y + 26)

        elif self.current_screen == "end":
            self._blit_centered(self.font_title, "Experiment complete!",
                                cfg["accent_color"], 36)
            y = 100
            for line in self.summary_text.splitlines():
                surf, rect = self.font_small.render(line, fgcolor=text_color)
                rect.topleft = (40, y)
                self.screen.blit(surf, rect)
                y += 22
            y += 12
            for line in self.csv_preview():
                surf, rect = self.font_small.render(line, fgcolor=text_color)
                rect.topleft = (40, y)
                self.screen.blit(surf, rect)
                y += 20
            if self.export_path is not None:
                self._blit_centered(self.font_small, f"CSV: {self.export_path}",
                                    text_color, y + 12)
            if self.copy_status:
                self._blit_centered(self.font_small, self.copy_status,
                                    cfg["accent_color"], y + 34)
            self._blit_centered(self.font_small,
                                "C: copy CSV   R: next participant   Q: quit",
                                text_color, y + 56)

        if self.error_text:
            self._blit_centered(self.font_small, self.error_text, cfg["error_color"],
                                self.screen.get_height() - 40)


# ══════════════════════════════════════════════════════════════════
#  Main loop
# ══════════════════════════════════════════════════════════════════

def build_controller(config: dict, view: PygameView) -> ExperimentController:
    store = RecordStore(JsonFileBackend(config.get("data_dir", "data")),
                        key=config.get("storage_key", "cm_experiment_records_v1"))
    renderers = default_renderers(config["bg_color"], view.font_small)
    return ExperimentController(
        config=config,
        generator=generate_trial_data,
        grader=grading,
        store=store,
        renderers=renderers,
        presenter=view,
    )


def _on_finished(controller: ExperimentController, view: PygameView) -> None:
    pid = controller.state.participant_id
    view.summary_text = format_summary(controller.summary)
    view.export_path = controller.store.write_csv(
        participant_id=pid, directory=controller.config.get("export_dir", "exports"))
    print("\n=== Results ===\n")
    print(view.summary_text)
    if view.export_path is not None:
        print(f"\nCSV saved to: {view.export_path}")
    if controller.log_path is not None:
        print(f"Log saved to: {controller.log_path}")


def copy_csv(view: PygameView) -> bool:
    """Put the end-of-session CSV on the system clipboard."""
    if not view.csv_output:
        view.copy_status = "Nothing to copy"
        return False
    try:
        if not pygame.scrap.get_init():
            pygame.scrap.init()
        pygame.scrap.put_text(view.csv_output)
    except pygame.error as e:
        logger.warning("Clipboard copy failed: %s", e)
        view.copy_status = "Copy failed"
        return False
    view.copy_status = "Copied!"
    return True


def _dispatch(controller: ExperimentController, view: PygameView, command: str, *args) -> None:
    try:
        controller.dispatch(command, *args)
    except GenerationError:
        # the controller already wrote the message; Enter retries
        logger.warning("Trial generation failed; waiting for retry")
    except OSError as e:
        logger.error("Could not open session log: %s", e)
        view.write_error(f"Could not open session log: {e}")


def handle_event(event, controller: ExperimentController, view: PygameView) -> bool:
    """Apply one pygame event; False means quit."""
    if event.type == pygame.QUIT:
        return False

    screen = view.current_screen

    # key-up: the "r" TEXTINPUT was already dropped on the end screen
    if event.type == pygame.KEYUP and screen == "end" and event.key == pygame.K_r:
        _dispatch(controller, view, "reset")
        view.participant_input = ""
        view.export_path = None
        view.copy_status = ""
        return True

    if event.type == pygame.KEYDOWN:
        if event.key == pygame.K_ESCAPE:
            return False
        if screen == "end":
            if event.key == pygame.K_q:
                return False
            if event.key == pygame.K_c:
                copy_csv(view)
            return True
        if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            if screen == "intro":
                _dispatch(controller, view, "start", view.participant_input)
            elif controller.state.current_trial_data is None:
                _dispatch(controller, view, "retry")
            else:
                _dispatch(controller, view, "submit")
            if controller.is_finished:
                _on_finished(controller, view)
        elif event.key == pygame.K_BACKSPACE:
            if screen == "intro":
                view.participant_input = view.participant_input[:-1]
            else:
                view.response_input = view.response_input[:-1]

    elif event.type == pygame.TEXTINPUT and screen != "end":
        if screen == "intro":
            if len(view.participant_input) < MAX_INPUT_LEN:
                view.participant_input += event.text
        elif len(view.response_input) < MAX_INPUT_LEN:
            view.response_input += event.text

    return True


def run(config: dict = CONFIG) -> None:
    pygame.init()
    view = PygameView(config)
    controller = build_controller(config, view)
    clock = pygame.time.Clock()
    pygame.key.start_text_input()

    running = True
    while running:
        clock.tick(60)

        for event in pygame.event.get():
            if not handle_event(event, controller, view):
                running = False
                break

        view.draw()
        pygame.display.flip()

    pygame.quit()
    logger.info("Window closed after %d trial(s).", len(controller.results))


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    run(CONFIG)


if __name__ == "__main__":
    main()
