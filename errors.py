"""
Program Errors

Every failed operation surfaces as one of these. The HTTP layer turns them
into responses using `status_code` and `code`.
"""


class ProgramError(Exception):
    code = "ProgramError"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class AlreadyExists(ProgramError):
    """Account already in use"""
    code = "AlreadyExists"
    status_code = 409


class NotFound(ProgramError):
    """Account does not exist"""
    code = "NotFound"
    status_code = 404


class Unauthorized(ProgramError):
    """Signer does not match the account authority"""
    code = "Unauthorized"
    status_code = 401


class CapacityExceeded(ProgramError):
    """List is at its maximum length"""
    code = "CapacityExceeded"
    status_code = 409


class AlreadyMember(ProgramError):
    """User is already a member of this community"""
    code = "AlreadyMember"
    status_code = 409


class InvalidAddress(ProgramError):
    """Account address does not match its derivation"""
    code = "InvalidAddress"


class InvalidArguments(ProgramError):
    """Invalid instruction arguments"""
    code = "InvalidArguments"
    status_code = 422


class InvalidAnswerIndex(ProgramError):
    """Answer index out of range"""
    code = "InvalidAnswerIndex"


class PolicyViolation(ProgramError):
    code = "PolicyViolation"


class LimitDateInPast(PolicyViolation):
    """Limit date must be in the future"""
    code = "LimitDateInPast"


class VotingClosed(PolicyViolation):
    """Voting is closed for this survey"""
    code = "VotingClosed"


class TooManyAnswers(PolicyViolation):
    """Too many answers"""
    code = "TooManyAnswers"


class TooFewAnswers(PolicyViolation):
    """Not enough answers"""
    code = "TooFewAnswers"


class ValueTooLong(PolicyViolation):
    """Value exceeds its maximum length"""
    code = "ValueTooLong"


class EmptyValue(PolicyViolation):
    """Value must not be empty"""
    code = "EmptyValue"


class NotAMember(PolicyViolation):
    """User is not a member of this community"""
    code = "NotAMember"
    status_code = 403


class SurveyNotInCommunity(PolicyViolation):
    """Survey does not belong to this community"""
    code = "SurveyNotInCommunity"


class Conflict(ProgramError):
    """Account changed since it was read"""
    code = "Conflict"
    status_code = 409


class InvalidClock(ProgramError):
    """Clock returned an invalid timestamp"""
    code = "InvalidClock"
    status_code = 500
