import string

ORDER_NUMBER_PREFIX = "ORD-"
ORDER_NUMBER_LENGTH = 10
ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits

UNPAID_ORDER_TTL_HOURS = 24
ORDER_LIST_LIMIT = 50
