"""Rule-based assignment matcher (city + profession keyword table)."""

from typing import Iterable, List, Optional

from civicdesk.config import ComplaintType, Profession
from civicdesk.complaints.domain.entities import Complaint, StaffProfile
from civicdesk.complaints.domain.value_objects import LifecycleConfig


class AssignmentMatcher:
    """
    Pairs a complaint with the first qualified staff member.

    Qualified means: same city (case-insensitive) and a profession whose
    keywords appear in the complaint type. Ties go to directory order;
    callers sort the directory beforehand if they want another priority.
    """

    def __init__(self, config: LifecycleConfig):
        self._config = config

    @property
    def table_version(self) -> str:
        return self._config.version

    def is_compatible(self, profession: Profession, complaint_type: ComplaintType) -> bool:
        """Whether ``profession`` can handle ``complaint_type``. Never raises."""
        type_text = complaint_type.value.lower()
        return any(keyword in type_text for keyword in self._config.keywords_for(profession))

    def candidates(self, complaint: Complaint, staff_directory: Iterable[StaffProfile]) -> List[StaffProfile]:
        """Active staff in the complaint's city, in directory order."""
        return [
            staff for staff in staff_directory
            if staff.is_active and staff.works_in(complaint.location.city)
        ]

    def match(self, complaint: Complaint, staff_directory: Iterable[StaffProfile]) -> Optional[StaffProfile]:
        """
        Select an assignee for ``complaint``.

        Returns:
            The first compatible candidate, or None when nobody qualifies.
            No match is a normal outcome and leaves the complaint OPEN.
        """
        for staff in self.candidates(complaint, staff_directory):
            if self.is_compatible(staff.profession, complaint.type):
                return staff
        return None
