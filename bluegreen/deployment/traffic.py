"""Blue/green deployment: routing directive rewriting and traffic cutover."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .config import DeploymentConfig, ReloadOutcome, Slot
from .exceptions import InvalidSlotError, RoutingDirectiveError
from .health import EnvironmentHealthProbe
from .proxy import ProxyController
from .state import DeploymentStateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectiveMatch:
    """Location of the routing directive's value inside the config text."""

    value: str
    start: int
    end: int

    def rewrite(self, text: str, new_value: str) -> str:
        return text[: self.start] + new_value + text[self.end:]


class DirectiveMatcher:
    """One pattern for finding ``set $<var> "<slot>";`` in a proxy config.

    ``pattern`` is a template with a ``{var}`` placeholder; group 2 must
    capture the value. Subclass or instantiate with another pattern to
    support a different proxy dialect.
    """

    def __init__(self, name: str, pattern: str):
        self.name = name
        self.pattern = pattern

    def compile(self, variable: str) -> "re.Pattern[str]":
        return re.compile(self.pattern.format(var=re.escape(variable)))

    def find(self, text: str, variable: str) -> List[DirectiveMatch]:
        matches = []
        for m in self.compile(variable).finditer(text):
            if _is_commented(text, m.start()):
                continue
            matches.append(DirectiveMatch(m.group(2), m.start(2), m.end(2)))
        return matches


DEFAULT_MATCHERS: Tuple[DirectiveMatcher, ...] = (
    DirectiveMatcher("exact", r'(set\s+\${var}\s+")(blue|green)(";?)'),
    DirectiveMatcher("any_quoted", r'(set\s+\${var}\s+")([^"]*)(";?)'),
    DirectiveMatcher(
        "tolerant",
        r"""(set[ \t]+\${var}[ \t]+['"]?)([^'";\s]*)(['"]?[ \t]*;?)""",
    ),
)


def _is_commented(text: str, pos: int) -> bool:
    line_start = text.rfind("\n", 0, pos) + 1
    return "#" in text[line_start:pos]


@dataclass
class SwitchResult:
    """Outcome of a traffic switch.

    ``success`` with ``reload == MANUAL_REQUIRED`` is a degraded success:
    the config on disk points at the target but the proxy has not picked
    it up yet.
    """

    target: Slot
    success: bool
    changed: bool = False
    reload: ReloadOutcome = ReloadOutcome.NOT_NEEDED
    error: Optional[str] = None
    config_path: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.success and self.reload is ReloadOutcome.MANUAL_REQUIRED

    def to_dict(self) -> dict:
        return {
            "target": self.target.value,
            "success": self.success,
            "changed": self.changed,
            "reload": self.reload.value,
            "degraded": self.degraded,
            "error": self.error,
            "config_path": self.config_path,
        }


class TrafficSwitcher:
    """Points the reverse proxy at a slot and records it as live."""

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        probe: Optional[EnvironmentHealthProbe] = None,
        store: Optional[DeploymentStateStore] = None,
        proxy: Optional[ProxyController] = None,
        matchers: Sequence[DirectiveMatcher] = DEFAULT_MATCHERS,
    ):
        self._config = config or DeploymentConfig()
        self._probe = probe or EnvironmentHealthProbe(self._config)
        self._store = store or DeploymentStateStore(self._config)
        self._proxy = proxy or ProxyController(self._config)
        self._matchers = tuple(matchers)

    @property
    def config_path(self) -> Path:
        return self._proxy.config_path

    def switch_to(self, target) -> SwitchResult:
        """Cut live traffic over to ``target``.

        Returns an unsuccessful result when the target is not healthy.
        Raises RoutingDirectiveError when the config cannot be rewritten.
        """
        target = Slot.parse(target)
        path = self.config_path
        logger.info("Switching traffic to %s", target.value)

        health = self._probe.probe(target)
        if not health.is_healthy:
            message = (
                f"Cannot switch to {target.value}: environment is "
                f"{health.status.value} ({health.error or 'no detail'})"
            )
            logger.error("%s. Aborting traffic switch", message)
            return SwitchResult(
                target=target, success=False, error=message, config_path=str(path)
            )

        text = self._read_config(path)
        match = self.locate(text, path)

        if match.value == target.value:
            logger.info("Proxy config already routes to %s, no change needed", target.value)
            self._store.set_live(target)
            return SwitchResult(target=target, success=True, config_path=str(path))

        new_text = match.rewrite(text, target.value)
        if new_text == text:
            raise RoutingDirectiveError(
                f"Config replacement failed, config unchanged. Target: {target.value}",
                config_path=str(path),
            )

        # In-place write: the docker config is bind-mounted as a single file,
        # and replacing the inode would hide the change from the container.
        try:
            path.write_text(new_text)
        except OSError as e:
            raise RoutingDirectiveError(
                f"Proxy config not writable: {path} ({e})", config_path=str(path)
            ) from e
        written = self.locate(self._read_config(path), path)
        if written.value != target.value:
            raise RoutingDirectiveError(
                f"Routing directive in {path} reads {written.value!r} after "
                f"writing {target.value!r}",
                config_path=str(path),
            )
        logger.info("Proxy config %s now routes to %s", path.name, target.value)

        reload = self._proxy.reload()
        self._store.set_live(target)
        result = SwitchResult(
            target=target,
            success=True,
            changed=True,
            reload=reload,
            config_path=str(path),
        )
        if result.degraded:
            logger.warning(
                "Traffic switched to %s but the proxy must be reloaded manually",
                target.value,
            )
        else:
            logger.info("Traffic successfully switched to %s", target.value)
        return result

    def locate(self, text: str, path: Optional[Path] = None) -> DirectiveMatch:
        """Find the single routing directive.

        Every matcher is run; matches that start at the same offset are the
        same directive. The earliest matcher's reading of it is returned.
        More than one distinct directive is an error, since the proxy would
        apply only the last one.
        """
        variable = self._config.routing_variable
        found: Dict[int, Tuple[DirectiveMatcher, DirectiveMatch]] = {}
        for matcher in self._matchers:
            for match in matcher.find(text, variable):
                found.setdefault(match.start, (matcher, match))

        if not found:
            raise self._not_found(text, path)
        if len(found) > 1:
            lines = sorted(text.count("\n", 0, start) + 1 for start in found)
            raise RoutingDirectiveError(
                f"Found {len(found)} '{variable}' directives in {path} "
                f"(lines {', '.join(map(str, lines))}); expected exactly one",
                config_path=str(path or ""),
                pattern=" | ".join(m.pattern for m in self._matchers),
            )
        matcher, match = next(iter(found.values()))
        logger.debug("Routing directive located by %s matcher", matcher.name)
        return match

    def current_target(self) -> Optional[Slot]:
        """Slot the proxy config currently routes to, if it can be read."""
        path = self.config_path
        try:
            match = self.locate(self._read_config(path), path)
            return Slot.parse(match.value)
        except (RoutingDirectiveError, InvalidSlotError) as e:
            logger.debug("Cannot determine routed slot from %s: %s", path, e)
            return None

    def _read_config(self, path: Path) -> str:
        try:
            return path.read_text()
        except OSError as e:
            raise RoutingDirectiveError(
                f"Proxy config not readable: {path} ({e})", config_path=str(path)
            ) from e

    def _not_found(self, text: str, path: Optional[Path]) -> RoutingDirectiveError:
        variable = self._config.routing_variable
        expected = f'set ${variable} "(blue|green)"'
        lines = text.splitlines()
        for index, line in enumerate(lines):
            if variable in line and "set" in line and "map" not in line:
                lo, hi = max(0, index - 2), min(len(lines), index + 3)
                context = "\n".join(
                    f"{'>>>' if i == index else '   '} {i + 1}: {lines[i]}"
                    for i in range(lo, hi)
                )
                return RoutingDirectiveError(
                    f"Failed to update {variable} in {path}.\n"
                    f"Found line {index + 1}: {line.strip()!r}\n"
                    f"Expected pattern: {expected}\n{context}",
                    config_path=str(path or ""),
                    pattern=expected,
                )
        return RoutingDirectiveError(
            f"{variable} set statement not found in proxy config {path}",
            config_path=str(path or ""),
            pattern=expected,
        )
