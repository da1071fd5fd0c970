"""Payment-sender collaborator used to disburse payouts and refunds."""

from parimutuel_core.payments.sender import HttpPaymentSender, PaymentSender

__all__ = ["HttpPaymentSender", "PaymentSender"]
