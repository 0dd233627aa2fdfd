from django.conf import settings
from django.db import DatabaseError, connections
from django.http import JsonResponse


def healthz(request):
    upstream = {
        'configured': bool(settings.OPENMRS_BASE_URL),
        'admissionTag': bool(settings.ADMISSION_LOCATION_TAG_UUID),
        'mortuaryTag': bool(settings.MORTUARY_LOCATION_TAG_UUID),
    }
    try:
        with connections['default'].cursor() as c:
            c.execute('SELECT 1')
            row = c.fetchone()
        return JsonResponse({'ok': True, 'db': bool(row and row[0] == 1), 'upstream': upstream})
    except DatabaseError as e:
        return JsonResponse({'ok': False, 'error': str(e), 'upstream': upstream}, status=500)
