import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .services import handle_webhook

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Razorpay-Signature"


@csrf_exempt
@require_POST
def gateway_webhook(request):
    """Receive signed payment events from the gateway.

    Anything that passes signature checks is acknowledged with 200, even
    unknown orders, so the gateway stops retrying.  Bad signatures surface
    as ``InvalidSignature`` through the error middleware.
    """
    outcome = handle_webhook(request.body, request.headers.get(SIGNATURE_HEADER, ""))
    return JsonResponse({"status": outcome})
