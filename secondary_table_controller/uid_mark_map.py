import logging
import typing

logger = logging.getLogger('stctl.uid_mark_map')


class UidMarkMap:
    """UID ranges owned by a routing mark

    Ranges never overlap, removal needs the exact range and mark it was added with.
    """

    def __init__(self):
        self._ranges: typing.List[typing.Tuple[int, int, int]] = []

    def __len__(self):
        return len(self._ranges)

    def __iter__(self):
        return iter(sorted(self._ranges))

    def add(self, uid_start: int, uid_end: int, mark: int) -> bool:
        if uid_start > uid_end:
            return False

        for start, end, _mark in self._ranges:
            if uid_start <= end and start <= uid_end:
                logger.debug('UID range %s-%s overlaps %s-%s', uid_start, uid_end, start, end)
                return False

        self._ranges.append((uid_start, uid_end, mark))
        return True

    def remove(self, uid_start: int, uid_end: int, mark: int) -> bool:
        try:
            self._ranges.remove((uid_start, uid_end, mark))
        except ValueError:
            return False
        return True

    def get_mark(self, uid: int) -> typing.Optional[int]:
        for start, end, mark in self._ranges:
            if start <= uid <= end:
                return mark
        return None
