
class CradleAPIError(Exception): pass

class NotFoundError(CradleAPIError): pass

class InvalidStateError(CradleAPIError): pass

class CapacityExhaustedError(CradleAPIError):

    def __init__(self, message, available_slots=0, required_slots=1):
        super().__init__(message)
        self.available_slots = available_slots
        self.required_slots = required_slots

class ValidationError(CradleAPIError): pass

class TransientDependencyError(CradleAPIError): pass

class DaycareNotFoundError(NotFoundError): pass

class ProgramNotFoundError(NotFoundError): pass

class EntryNotFoundError(NotFoundError): pass

class OfferNotFoundError(NotFoundError): pass

class CampaignNotFoundError(NotFoundError): pass

class RuleNotFoundError(NotFoundError): pass

class OutstandingOfferError(InvalidStateError): pass

class OfferAlreadyRespondedError(InvalidStateError): pass

class OfferExpiredError(InvalidStateError): pass

class EntryNotEligibleError(InvalidStateError): pass

class CampaignStateError(InvalidStateError): pass

class AlreadyConvertedError(InvalidStateError): pass

class AuditLogImmutableError(InvalidStateError): pass
