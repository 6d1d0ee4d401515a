class BitByBitError(Exception):
    """Base class for errors raised by the structuring and tracking services."""

    code = "INTERNAL_ERROR"


class ConfigurationError(BitByBitError):
    """Classification capability is missing or rejected our credentials."""

    code = "CLASSIFIER_NOT_CONFIGURED"


class NotFoundError(BitByBitError):
    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class MalformedResponseError(BitByBitError):
    """Classifier output could not be parsed into sections."""

    code = "MALFORMED_CLASSIFIER_RESPONSE"


class StorageError(BitByBitError):
    code = "STORAGE_ERROR"


class ChapterBusyError(BitByBitError):
    """Another structuring job currently holds the chapter."""

    code = "CHAPTER_BUSY"

    def __init__(self, chapter_id: int) -> None:
        super().__init__(f"Chapter {chapter_id} is already being structured")
        self.chapter_id = chapter_id


class BookBusyError(BitByBitError):
    """A whole-book structuring run is already in progress."""

    code = "BOOK_BUSY"

    def __init__(self, book_id: int) -> None:
        super().__init__(f"Book {book_id} is already being structured")
        self.book_id = book_id
