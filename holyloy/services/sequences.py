"""
Locked named counters for Global Numbers, local numbers and Infinity reward numbers.

Uses SELECT ... FOR UPDATE on the counter row so concurrent transactions hand
out unique, strictly increasing values. The caller commits.
"""
from ..extensions import db
from ..models.ledger import SequenceCounter


GLOBAL_NUMBER_SEQUENCE = 'global_number'
INFINITY_SEQUENCE = 'infinity'


def local_number_sequence(country: str) -> str:
    return f'global_number:{country or "unknown"}'


def next_value(name: str, start: int = 1) -> int:
    """
    Increment and return the counter `name`.

    The first value handed out for a new counter is `start`.
    """
    counter = SequenceCounter.query.filter_by(name=name).with_for_update().populate_existing().first()
    if counter is None:
        counter = SequenceCounter(name=name, current_value=start - 1)
        db.session.add(counter)
        db.session.flush()

    counter.current_value += 1
    db.session.flush()
    return counter.current_value


def current_value(name: str) -> int:
    counter = SequenceCounter.query.filter_by(name=name).first()
    return counter.current_value if counter else 0
