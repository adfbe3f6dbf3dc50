import logging

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from .token_blacklist import get_token_blacklist

logger = logging.getLogger(__name__)


class PingView(APIView):
    """Health check endpoint"""
    authentication_classes = []
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({"message": "Bang"})


class LogoutView(APIView):
    """Invalidate the caller's token for both the REST API and websockets."""

    def post(self, request):
        get_token_blacklist().add(request.auth)
        logger.info(f"Token invalidated for {request.user.user_id}")
        return Response({"message": "Logged out successfully"}, status=status.HTTP_200_OK)
