from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Protocol

from rental_search.experiments.models import Experiment, ExperimentEvent, UserRecord


class ExperimentRepository:
    def __init__(self) -> None:
        self._experiments: Dict[str, Experiment] = {}
        self._events: Dict[str, List[ExperimentEvent]] = {}
        self._lock = threading.Lock()

    def save(self, experiment: Experiment) -> Experiment:
        with self._lock:
            self._experiments[experiment.experiment_id] = experiment
        return experiment

    def get(self, experiment_id: str) -> Optional[Experiment]:
        with self._lock:
            return self._experiments.get(experiment_id)

    def list(self) -> List[Experiment]:
        with self._lock:
            return sorted(self._experiments.values(), key=lambda item: item.experiment_id)

    def add_event(self, event: ExperimentEvent) -> None:
        with self._lock:
            self._events.setdefault(event.experiment_id, []).append(event)

    def events(self, experiment_id: str) -> List[ExperimentEvent]:
        with self._lock:
            return list(self._events.get(experiment_id, []))


class UserDirectory(Protocol):
    def get(self, user_id: str) -> Optional[UserRecord]: ...


class InMemoryUserDirectory:
    def __init__(self, users: Iterable[UserRecord] = ()) -> None:
        self._users: Dict[str, UserRecord] = {user.user_id: user for user in users}

    def add(self, user: UserRecord) -> None:
        self._users[user.user_id] = user

    def get(self, user_id: str) -> Optional[UserRecord]:
        return self._users.get(user_id)
