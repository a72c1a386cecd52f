from dataclasses import dataclass

from ..clock import Clock, utc_now
from ..repo import Repository
from .candidates import CandidatePool
from .engagement import EngagementMonitor
from .events import EventSink
from .lifecycle import LifecycleService
from .matchmaker import Matchmaker
from .messages import MessageLog


@dataclass
class Services:
    repo: Repository
    messages: MessageLog
    sink: EventSink
    pool: CandidatePool
    matchmaker: Matchmaker
    lifecycle: LifecycleService
    engagement: EngagementMonitor
    clock: Clock


def build_services(repo: Repository, messages: MessageLog, sink: EventSink, clock: Clock = utc_now) -> Services:
    """Wire the match core around one repository, message log and event sink."""
    pool = CandidatePool(repo)
    return Services(
        repo=repo,
        messages=messages,
        sink=sink,
        pool=pool,
        matchmaker=Matchmaker(repo, pool, sink, clock=clock),
        lifecycle=LifecycleService(repo, sink, clock=clock),
        engagement=EngagementMonitor(repo, messages, sink, clock=clock),
        clock=clock,
    )
