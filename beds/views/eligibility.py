from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from beds.serializers.allocation import CandidateQuerySerializer
from beds.services.eligibility import cached_candidates, format_eligibility


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def candidates(request):
    """Patients (or decedents) awaiting a bed, with already allocated ones removed."""
    q = CandidateQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    result = cached_candidates(refresh=q.validated_data['refresh'])
    return Response({'ok': True, 'data': format_eligibility(result)})
