from django.urls import include, path

from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenRefreshView, TokenVerifyView

from users.views import LockoutTokenObtainPairView

from .views import AttendanceViewSet, FaceEnrollView, FaceVerifyView, LivenessView

router = DefaultRouter()
router.register(r"attendance", AttendanceViewSet, basename="attendance")

urlpatterns = [
    # Auth endpoints
    path("auth/login/", LockoutTokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("auth/verify/", TokenVerifyView.as_view(), name="token_verify"),
    # Face endpoints
    path("face/enroll/", FaceEnrollView.as_view(), name="face-enroll"),
    path("face/verify/", FaceVerifyView.as_view(), name="face-verify"),
    path("face/liveness/", LivenessView.as_view(), name="face-liveness"),
    # Router endpoints
    path("", include(router.urls)),
]
