"""URL configuration for django-entitlements.

Include in your project:
    path('api/', include('django_entitlements.urls')),
"""

from django.urls import path

from django_entitlements import views

app_name = 'entitlements'

urlpatterns = [
    path('webhooks/payments/', views.payment_webhook, name='payment-webhook'),
    path('portal/claim/', views.claim, name='claim'),
    path('portal/bootstrap/', views.bootstrap, name='bootstrap'),
    path('portal/entitlements/', views.entitlement_list, name='entitlement-list'),
    path('portal/operators/<str:operator_id>/members/', views.members, name='operator-members'),
    path('portal/resend/', views.resend, name='resend'),
    path('waitlist/', views.waitlist, name='waitlist'),
]
