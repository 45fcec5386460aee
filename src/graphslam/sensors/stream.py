"""Validation of the ordered record stream."""

import logging
from typing import Iterable, Iterator, Optional, Type

import numpy as np

from ..exceptions import StreamFormatError
from ..pose_graph.pose import Pose, SE2Pose
from .data import StreamRecord

logger = logging.getLogger(__name__)


class RecordStream:
    """Checks that records are well formed and arrive in timestamp order.

    The stream can either wrap an iterable (and be iterated) or be fed record by
    record through :meth:`validate`.
    """

    def __init__(
        self,
        records: Optional[Iterable[StreamRecord]] = None,
        pose_type: Type[Pose] = SE2Pose,
    ) -> None:
        """Initialize the stream.

        Args:
            records: Optional source of records.
            pose_type: Pose type expected for motion increments.
        """
        self._records = records
        self.pose_type = pose_type
        self.index = 0
        self.last_timestamp: Optional[float] = None

    def validate(self, record: StreamRecord) -> StreamRecord:
        """Validate the next record and advance the stream position.

        Args:
            record: Record to validate.

        Returns:
            The same record.

        Raises:
            StreamFormatError: If the record is malformed or out of order.
        """
        index = self.index
        if not isinstance(record, StreamRecord):
            raise StreamFormatError(
                f"expected a StreamRecord, got {type(record).__name__}", record_index=index
            )
        if not np.isfinite(record.timestamp):
            raise StreamFormatError("timestamp is not finite", record_index=index)
        if self.last_timestamp is not None and record.timestamp < self.last_timestamp:
            raise StreamFormatError(
                f"timestamp {record.timestamp} precedes previous timestamp {self.last_timestamp}",
                record_index=index,
            )
        if record.motion is not None:
            if not isinstance(record.motion, self.pose_type):
                raise StreamFormatError(
                    f"motion must be a {self.pose_type.__name__}, "
                    f"got {type(record.motion).__name__}",
                    record_index=index,
                )
            if not np.all(np.isfinite(record.motion.matrix())):
                raise StreamFormatError("motion increment is not finite", record_index=index)
        for observation in record.observations:
            if observation.dim != self.pose_type.dim:
                raise StreamFormatError(
                    f"observation points must be {self.pose_type.dim}D, got {observation.dim}D",
                    record_index=index,
                )

        self.index += 1
        self.last_timestamp = record.timestamp
        return record

    def reset(self) -> None:
        """Forget the stream position."""
        self.index = 0
        self.last_timestamp = None

    def __iter__(self) -> Iterator[StreamRecord]:
        if self._records is None:
            return
        for record in self._records:
            yield self.validate(record)
