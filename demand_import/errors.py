from __future__ import annotations


class WorkbookImportError(Exception):
    """Pipeline failure that aborts a preview or a commit as a whole."""

    code = "IMPORT_FAILED"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class FileTooLarge(WorkbookImportError):
    code = "FILE_TOO_LARGE"


class EmptyFile(WorkbookImportError):
    code = "EMPTY_FILE"


class InvalidMimeType(WorkbookImportError):
    code = "INVALID_MIME_TYPE"


class InvalidSignature(WorkbookImportError):
    code = "INVALID_SIGNATURE"


class InvalidWorkbook(WorkbookImportError):
    code = "INVALID_WORKBOOK"


class FormatUndetected(WorkbookImportError):
    code = "FORMAT_UNDETECTED"


class WrongFormatForEndpoint(WorkbookImportError):
    code = "WRONG_FORMAT_FOR_ENDPOINT"


class MissingColumns(WorkbookImportError):
    code = "MISSING_COLUMNS"


class NoDataRows(WorkbookImportError):
    code = "NO_DATA_ROWS"


class Unauthorized(WorkbookImportError):
    code = "UNAUTHORIZED"
    status_code = 401


class NoRowsToImport(WorkbookImportError):
    code = "NO_ROWS_TO_IMPORT"


class SecurityValidationFailure(WorkbookImportError):
    code = "SECURITY_VALIDATION_FAILURE"
    status_code = 422


class InvalidRequest(WorkbookImportError):
    code = "INVALID_REQUEST"
    status_code = 422


class PersistenceError(WorkbookImportError):
    code = "PERSISTENCE_ERROR"
    status_code = 500


class UnexpectedImportError(WorkbookImportError):
    code = "INTERNAL_ERROR"
    status_code = 500


def status_for(code: str) -> int:
    for error_cls in WorkbookImportError.__subclasses__():
        if error_cls.code == code:
            return error_cls.status_code
    return WorkbookImportError.status_code
