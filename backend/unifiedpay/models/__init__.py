from unifiedpay.models.page import PaymentPage, PaymentItem, ItemType
from unifiedpay.models.payment import Payment
