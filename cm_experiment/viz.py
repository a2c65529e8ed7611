"""
Bar-chart renderers, one per condition.

Every chart is drawn on a 300 × 300 canvas (40 px margin, 30 px bars,
y-scale 0–100) and then scaled to fit the container surface.  The two
marked bars (positions 1 and 2) get a black dot under the baseline.
"""

import random

import pygame
import pygame.freetype

from .data import MARKED

HEIGHT = 300
WIDTH = 300
MARGIN = 40
BAR_WIDTH = 30

BLACK = pygame.Color("black")
WHITE = pygame.Color("white")


def y_scale(value: float) -> float:
    """0–100 → pixel row; 100 sits at the top margin."""
    return (HEIGHT - MARGIN) - value / 100 * (HEIGHT - 2 * MARGIN)


def bar_rect(i: int, value: float) -> pygame.Rect:
    top = y_scale(value)
    return pygame.Rect(
        MARGIN * 2 + i * BAR_WIDTH,
        round(top),
        BAR_WIDTH,
        round((HEIGHT - MARGIN) - top),
    )


def marker_center(i: int) -> tuple[int, int]:
    return MARGIN * 2 + i * BAR_WIDTH + BAR_WIDTH // 2, HEIGHT - MARGIN // 2


def gradient_color(value: float) -> pygame.Color:
    """Linear yellow → green scale over 0–100."""
    t = max(0.0, min(1.0, value / 100))
    lo, hi = pygame.Color("yellow"), pygame.Color(0, 128, 0)
    return pygame.Color(
        round(lo.r + (hi.r - lo.r) * t),
        round(lo.g + (hi.g - lo.g) * t),
        round(lo.b + (hi.b - lo.b) * t),
    )


class BarChartRenderer:
    stroke: pygame.Color | None = None

    def __init__(self, background=(230, 230, 245), font: pygame.freetype.Font | None = None):
        self.background = pygame.Color(background)
        self.font = font

    # ── collaborator interface ────────────────────────────────────────────

    def clear(self, container: pygame.Surface) -> None:
        container.fill(self.background)

    def render(self, container: pygame.Surface, trial_data) -> None:
        self.clear(container)
        canvas = pygame.Surface((WIDTH, HEIGHT))
        canvas.fill(self.background)
        self.draw(canvas, list(trial_data.values))

        cw, ch = container.get_size()
        if (cw, ch) != (WIDTH, HEIGHT):
            side = min(cw, ch)
            canvas = pygame.transform.scale(canvas, (side, side))
        rect = canvas.get_rect(center=(cw // 2, ch // 2))
        container.blit(canvas, rect)

    # ── drawing ───────────────────────────────────────────────────────────

    def fills(self, values: list[int]) -> list[pygame.Color]:
        raise NotImplementedError

    def draw(self, canvas: pygame.Surface, values: list[int]) -> None:
        self._draw_axes(canvas)
        for i, (value, fill) in enumerate(zip(values, self.fills(values))):
            rect = bar_rect(i, value)
            pygame.draw.rect(canvas, fill, rect)
            if self.stroke is not None:
                pygame.draw.rect(canvas, self.stroke, rect, 1)
        for i in MARKED:
            pygame.draw.circle(canvas, BLACK, marker_center(i), round(MARGIN / 6))

    def _draw_axes(self, canvas: pygame.Surface) -> None:
        base_y = HEIGHT - MARGIN
        pygame.draw.line(canvas, BLACK, (MARGIN, round(y_scale(100))), (MARGIN, base_y))
        pygame.draw.line(canvas, BLACK, (MARGIN, base_y), (WIDTH, base_y))
        for tick in (0, 100):
            y = round(y_scale(tick))
            pygame.draw.line(canvas, BLACK, (MARGIN - 6, y), (MARGIN, y))
            self._label(canvas, str(tick), (MARGIN - 9, y), align="right")

    def _label(self, canvas, text: str, pos: tuple[int, int], align: str = "left") -> None:
        if self.font is None:
            return
        surf, rect = self.font.render(text, fgcolor=BLACK)
        if align == "right":
            rect.midright = pos
        else:
            rect.midleft = pos
        canvas.blit(surf, rect)


class BWRenderer(BarChartRenderer):
    stroke = BLACK

    def fills(self, values):
        return [WHITE] * len(values)


class MulticolorRenderer(BarChartRenderer):
    # shuffled per render so no single hue is tied to a bar position
    colors = ("red", "peru", "purple", "lightgreen", "blue")

    def __init__(self, background=(230, 230, 245), font=None, rng: random.Random | None = None):
        super().__init__(background, font)
        self.rng = rng or random.Random()

    def fills(self, values):
        palette = list(self.colors)
        self.rng.shuffle(palette)
        return [pygame.Color(palette[i % len(palette)]) for i in range(len(values))]


class GradientRenderer(BarChartRenderer):
    legend_height = 100
    legend_width = 12

    def fills(self, values):
        return [gradient_color(v) for v in values]

    def draw(self, canvas, values):
        super().draw(canvas, values)
        self._draw_legend(canvas)

    def _draw_legend(self, canvas: pygame.Surface) -> None:
        x = WIDTH - MARGIN
        y = MARGIN
        for row in range(self.legend_height):
            value = 100 * (1 - row / (self.legend_height - 1))
            pygame.draw.line(canvas, gradient_color(value),
                             (x, y + row), (x + self.legend_width - 1, y + row))
        for tick, ty in ((100, y), (0, y + self.legend_height - 1)):
            self._label(canvas, str(tick), (x + self.legend_width + 3, ty))


def default_renderers(background=(230, 230, 245), font=None,
                      rng: random.Random | None = None) -> dict[str, BarChartRenderer]:
    return {
        "bw": BWRenderer(background, font),
        "multicolor": MulticolorRenderer(background, font, rng),
        "gradient": GradientRenderer(background, font),
    }
