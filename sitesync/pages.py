from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .routes import Route
from .seo import Prerenderer
from .utils import write_text

logger = logging.getLogger(__name__)


@dataclass
class RenderReport:
    rendered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.rendered) + len(self.failed)


def unique_outputs(routes: list[Route], report: RenderReport) -> list[Route]:
    seen: set[str] = set()
    unique = []
    for route in routes:
        if route.output_path in seen:
            logger.warning("Skipping %s: another route already writes %s", route.path, route.output_path)
            report.skipped.append(route.path)
            continue
        seen.add(route.output_path)
        unique.append(route)
    return unique


def render_routes(
    routes: list[Route],
    prerenderer: Prerenderer,
    output_dir: Path,
    workers: int = 1,
    batch_size: int = 50,
) -> RenderReport:
    report = RenderReport()
    pending = unique_outputs(routes, report)
    if not pending:
        return report

    def render_route(route: Route) -> Optional[str]:
        try:
            document = prerenderer.render(route)
            write_text(output_dir / route.output_path, document)
        except Exception as exc:
            logger.error("Failed to render %s: %s", route.path, exc)
            return str(exc) or exc.__class__.__name__
        return None

    workers = max(1, int(workers or 1))
    batch_size = max(1, batch_size)
    done = 0
    with ThreadPoolExecutor(max_workers=min(workers, batch_size, len(pending))) as executor:
        for start in range(0, len(pending), batch_size):
            batch = pending[start : start + batch_size]
            for route, error in zip(batch, executor.map(render_route, batch)):
                if error is None:
                    report.rendered.append(route.path)
                else:
                    report.failed[route.path] = error
            done += len(batch)
            logger.info("Rendered %d/%d routes", done, len(pending))
    return report
