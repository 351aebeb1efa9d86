import logging
from functools import wraps

from django.core.cache import cache
from django.http import JsonResponse

from academics.models import ClassSubject

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """Get client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def get_user_agent(request):
    return request.META.get('HTTP_USER_AGENT', '')[:255]


def is_school_admin(user):
    """Check if user is a school admin or superuser."""
    return user.is_superuser or getattr(user, 'is_school_admin', False)


def is_teacher_or_admin(user):
    """Check if user is a teacher, school admin, or superuser."""
    return (user.is_superuser or
            getattr(user, 'is_school_admin', False) or
            getattr(user, 'is_teacher', False))


def can_enter_marks(user, class_id, subject_id):
    """
    Check if a user can enter marks for a class/subject.

    Returns True if:
    - User is superuser or school admin
    - User is the teacher assigned to this subject for this class
    """
    if is_school_admin(user):
        return True
    if not getattr(user, 'is_teacher', False):
        return False
    return ClassSubject.objects.filter(
        class_assigned_id=class_id,
        subject_id=subject_id,
        teacher=user
    ).exists()


def _role_required(check, message):
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            if not request.user.is_authenticated:
                return JsonResponse({'error': 'Authentication required.', 'type': 'unauthenticated'}, status=401)
            if not check(request.user):
                logger.warning(f"{request.user} denied access to {view_func.__name__}")
                return JsonResponse({'error': message, 'type': 'forbidden'}, status=403)
            return view_func(request, *args, **kwargs)
        return wrapper
    return decorator


def admin_required(view_func):
    """Decorator to require school admin or superuser."""
    return _role_required(is_school_admin, 'School admin access required.')(view_func)


def teacher_or_admin_required(view_func):
    """Decorator to require teacher, school admin, or superuser."""
    return _role_required(is_teacher_or_admin, 'Teacher or admin access required.')(view_func)


def ratelimit(key='user', rate='100/h'):
    """
    Simple cache-based rate limiter decorator.

    Args:
        key: 'user' for user-based, 'ip' for IP-based limiting
        rate: Format "number/period" where period is s/m/h/d (second/minute/hour/day)
    """
    limit, period = rate.split('/')
    limit = int(limit)
    period_seconds = {'s': 1, 'm': 60, 'h': 3600, 'd': 86400}.get(period, 3600)

    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            if key == 'user' and request.user.is_authenticated:
                cache_key = f"ratelimit:{view_func.__name__}:user:{request.user.pk}"
            else:
                cache_key = f"ratelimit:{view_func.__name__}:ip:{get_client_ip(request)}"

            if not cache.add(cache_key, 1, period_seconds):
                try:
                    current = cache.incr(cache_key)
                except ValueError:
                    # Key expired between add and incr, recreate
                    cache.set(cache_key, 1, period_seconds)
                    current = 1

                if current > limit:
                    logger.warning(f"Rate limit exceeded for {cache_key}")
                    return JsonResponse(
                        {'error': 'Too many requests. Please try again later.', 'type': 'rate_limited'},
                        status=429
                    )

            return view_func(request, *args, **kwargs)
        return wrapper
    return decorator
