from dataclasses import asdict, dataclass


@dataclass
class JobRunStats:
    processed: int = 0
    sent: int = 0
    errors: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class SweepStats:
    processed: int = 0
    updated: int = 0
    errors: int = 0

    def as_dict(self) -> dict:
        return asdict(self)
