from django.http import JsonResponse


def health_view(request):
    return JsonResponse({"ok": True})


def error_404_view(request, exception):
    return JsonResponse({"ok": False, "error": "Not found"}, status=404)


def error_500_view(request):
    return JsonResponse({"ok": False, "error": "Server error"}, status=500)
