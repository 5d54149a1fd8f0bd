from .user import User
from .transaction import Transaction, TransactionType, PaymentStatus
from .referral_earning import ReferralEarning
from .promocode import Promocode, PromocodeType, PromocodeUsage
from .invoice import Invoice, InvoiceSequence, InvoiceStatus
from .server import Plan, Server, ServerStatus
from .gift_certificate import GiftCertificate
