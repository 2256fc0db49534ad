"""Recipient resolution: declarative spec + context -> concrete, deduplicated addresses.

Resolution is a pure function of (spec, context, directory state, static CC
config), so re-resolving on a retry yields the same lists.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

from ..config import settings
from ..directory.service import Directory
from ..errors import NotificationError, ResolutionError, ResolverBusy
from .schemas import Recipient, RecipientSpec, ResolutionContext, ResolvedRecipients
from .static_cc import StaticCcConfig

logger = logging.getLogger(__name__)

ROLE_TAGS: dict[str, tuple[str, ...]] = {
    "hr": ("hr", "hrm"),
    "admin": ("admin",),
    "finance": ("finance", "finance_manager"),
}


def _expand_tag(tag: str, context: ResolutionContext, directory: Directory) -> list[Recipient]:
    """Resolve one dynamic tag. Resolving to nobody is not an error."""
    if tag == "subject":
        person = directory.get_person(context.subject_id) if context.subject_id is not None else None
        return [person] if person else []
    if tag == "manager":
        if context.manager_id is not None:
            person = directory.get_person(context.manager_id)
        elif context.subject_id is not None:
            person = directory.manager_of(context.subject_id)
        else:
            person = None
        return [person] if person else []
    if tag in ROLE_TAGS:
        return directory.people_with_roles(ROLE_TAGS[tag])
    if tag == "team_members":
        if context.subject_id is None:
            return []
        return directory.team_of(context.subject_id)
    logger.warning("Unknown dynamic recipient tag %r skipped", tag)
    return []


def _dedupe(recipients: Iterable[Recipient], exclude: set[str] | None = None) -> list[Recipient]:
    seen = set(exclude or ())
    result = []
    for r in recipients:
        key = r.key
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(r)
    return result


def resolve(
    spec: RecipientSpec,
    context: ResolutionContext,
    directory: Directory,
    static_cc: StaticCcConfig | None = None,
) -> ResolvedRecipients:
    """Turn a recipient spec into concrete ``to`` and ``cc`` lists.

    Raises ResolutionError when no primary recipient remains.
    """
    to_candidates = list(spec.to)
    for tag in spec.to_tags:
        to_candidates.extend(_expand_tag(tag, context, directory))
    to = _dedupe(to_candidates)
    if not to:
        raise ResolutionError(
            f"no primary recipient resolved (explicit={len(spec.to)}, tags={spec.to_tags or []})"
        )

    cc_candidates = list(spec.cc_static)
    if static_cc is not None:
        cc_candidates.extend(static_cc.for_context(spec.cc_static_context))
    for tag in spec.cc_dynamic:
        cc_candidates.extend(_expand_tag(tag, context, directory))

    excluded = {r.key for r in to}
    if context.acting_user_id is not None:
        acting = directory.get_person(context.acting_user_id)
        if acting is not None:
            excluded.add(acting.key)
        cc_candidates = [r for r in cc_candidates if r.id != context.acting_user_id]
    if context.acting_user_email:
        excluded.add(context.acting_user_email.strip().lower())

    return ResolvedRecipients(to=to, cc=_dedupe(cc_candidates, exclude=excluded))


class ResolverPool:
    """Thread pool for directory lookups that refuses work instead of queueing it.

    A lookup that overruns its timeout keeps its thread until the directory
    answers. Once every thread is taken, new lookups fail fast with
    ResolverBusy rather than timing out behind the hung ones.
    """

    def __init__(self, max_workers: int) -> None:
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="resolver")
        self._lock = threading.Lock()
        self._busy = 0

    @property
    def busy(self) -> int:
        return self._busy

    def submit(self, fn: Callable, *args) -> Future:
        with self._lock:
            if self._busy >= self.max_workers:
                raise ResolverBusy(f"all {self.max_workers} resolver threads are held by earlier lookups")
            self._busy += 1
        try:
            future = self._executor.submit(fn, *args)
        except Exception:
            self._release()
            raise
        future.add_done_callback(self._release)
        return future

    def _release(self, _future: Future | None = None) -> None:
        with self._lock:
            self._busy -= 1

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


_pool = ResolverPool(settings.resolver_max_workers)


def resolve_with_timeout(
    spec: RecipientSpec,
    context: ResolutionContext,
    directory: Directory,
    static_cc: StaticCcConfig | None,
    timeout: float,
    pool: ResolverPool | None = None,
) -> ResolvedRecipients:
    """Run ``resolve`` with a bounded wait.

    Every failure comes back as a ResolutionError: an overrun, a directory
    error, or a saturated pool (ResolverBusy, the only retryable one).
    """
    future = (pool or _pool).submit(resolve, spec, context, directory, static_cc)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        raise ResolutionError(f"recipient lookup timed out after {timeout:g}s") from None
    except NotificationError:
        raise
    except Exception as e:
        logger.warning("Directory lookup failed: %s: %s", type(e).__name__, e)
        raise ResolutionError(f"recipient lookup failed: {type(e).__name__}: {e}") from e
