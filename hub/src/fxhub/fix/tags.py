"""FIX tag numbers used by the drop-copy parsers."""

SOH = "\x01"

# Header
MSG_TYPE = 35
LAST_PX = 31
EXEC_ID = 17
LAST_MKT = 30
SYMBOL = 55
TRADE_REPORT_ID = 571
TRADE_DATE = 75
TRANSACT_TIME = 60
SIDE = 54
SECONDARY_TRADE_REPORT_ID = 818
LAST_SPOT_RATE = 194
LAST_FORWARD_POINTS = 195
UTI_PREFIX = 1903

# Parties and sides
NO_SIDES = 552
PARTY_ID = 448
PARTY_ROLE = 452
PARTY_SUB_ID = 523

PARTY_ROLE_CUSTOMER = 1
PARTY_ROLE_EXECUTING_FIRM = 12
PARTY_ROLE_TRADER = 122

# Legs
LEG_SYMBOL = 600
LEG_SECURITY_TYPE = 609
LEG_SIDE = 624
LEG_TENOR = 620
LEG_CALL_PUT = 764
LEG_STRIKE_CURRENCY = 942
LEG_STRIKE = 612
LEG_MATURITY_DATE = 611
LEG_CUT = 598
LEG_QTY = 687
LEG_CURRENCY = 556
LEG_PREMIUM = 614
LEG_ISIN = 602
LEG_UTI = 2893
LEG_SETTL_DATE = 248
LEG_LAST_PX = 637
LEG_ID_QUALIFIER = 688
LEG_ID_VALUE = 689

TVTIC_QUALIFIER = "USI"
