from app.models.activity import Activity, ActivityParticipant, ActivityStatus  # noqa: F401
from app.models.activity_log import ActivityLog  # noqa: F401
from app.models.chat import ChatMessage, ChatRoom, ChatRoomParticipant, ChatRoomRole, ChatRoomType  # noqa: F401
from app.models.establishment import Establishment  # noqa: F401
from app.models.exam import Exam, Grade  # noqa: F401
from app.models.homework import Homework, HomeworkSubmission, SubmissionStatus  # noqa: F401
from app.models.role import Permission, Role, RolePermission  # noqa: F401
from app.models.room import Room  # noqa: F401
from app.models.school import (  # noqa: F401
    AcademicYear,
    Department,
    ParentLink,
    SchoolClass,
    Student,
    Subject,
    Teacher,
)
from app.models.timetable import TimetableEntry, TimetablePeriod  # noqa: F401
from app.models.user import User, UserRoleAssignment, UserStatus  # noqa: F401
