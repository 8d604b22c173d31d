from django.urls import path

from .views import CreatePaymentView, PaymentCallbackView, PaymentStatusView, RefundView

app_name = "payments"

urlpatterns = [
    path("<str:gateway>/create", CreatePaymentView.as_view(), name="create"),
    path("<str:gateway>/callback", PaymentCallbackView.as_view(), name="callback"),
    path("<str:gateway>/status/<str:payment_id>", PaymentStatusView.as_view(), name="status"),
    path("<str:gateway>/refund", RefundView.as_view(), name="refund"),
]
