from PySide6.QtCore import QAbstractTableModel, Qt, QModelIndex
from ...utils.helpers import fmt_date, fmt_money
from ..ledger.entities import Job, Step


class StepsTableModel(QAbstractTableModel):
    """
    Steps of one job, in step_number order.

    - Money columns are formatted; BALANCE_ROLE returns the raw balance so
      delegates can paint overpaid (negative) or outstanding steps.
    """

    HEADERS = ["#", "Step", "Status", "Cost", "Paid", "Balance", "Completed"]

    BALANCE_ROLE = Qt.UserRole + 1

    def __init__(self, rows: list[Step]):
        super().__init__()
        self._rows = sorted(rows, key=lambda s: s.step_number)

    def rowCount(self, parent=QModelIndex()):
        return 0 if parent.isValid() else len(self._rows)

    def columnCount(self, parent=QModelIndex()):
        return 0 if parent.isValid() else len(self.HEADERS)

    def data(self, index, role=Qt.DisplayRole):
        if not index.isValid():
            return None
        r = self._rows[index.row()]
        c = index.column()

        if role in (Qt.DisplayRole, Qt.EditRole):
            values = [
                r.step_number,
                r.name,
                r.status,
                fmt_money(r.cost),
                fmt_money(r.paid),
                fmt_money(r.balance),
                fmt_date(r.completion_date),
            ]
            return values[c]

        if role == Qt.TextAlignmentRole and c in (3, 4, 5):
            return int(Qt.AlignRight | Qt.AlignVCenter)

        if role == self.BALANCE_ROLE:
            return r.balance

        return None

    def headerData(self, section, orientation, role=Qt.DisplayRole):
        if orientation == Qt.Horizontal and role == Qt.DisplayRole:
            return self.HEADERS[section]
        return super().headerData(section, orientation, role)

    def at(self, row: int) -> Step:
        return self._rows[row]

    def replace(self, rows: list[Step]):
        self.beginResetModel()
        self._rows = sorted(rows, key=lambda s: s.step_number)
        self.endResetModel()


class JobsTableModel(QAbstractTableModel):
    HEADERS = ["Job", "Client", "Status", "Cost", "Paid", "Balance due", "Start"]

    BALANCE_ROLE = Qt.UserRole + 1

    def __init__(self, rows: list[Job], client_names: dict[str, str] | None = None):
        super().__init__()
        self._rows = rows
        self._client_names = client_names or {}

    def rowCount(self, parent=QModelIndex()):
        return 0 if parent.isValid() else len(self._rows)

    def columnCount(self, parent=QModelIndex()):
        return 0 if parent.isValid() else len(self.HEADERS)

    def data(self, index, role=Qt.DisplayRole):
        if not index.isValid():
            return None
        r = self._rows[index.row()]
        c = index.column()

        if role in (Qt.DisplayRole, Qt.EditRole):
            values = [
                r.name,
                self._client_names.get(r.client_id, r.client_id),
                r.status,
                fmt_money(r.cost_final),
                fmt_money(r.paid_total),
                fmt_money(r.balance_due),
                fmt_date(r.start_date),
            ]
            return values[c]

        if role == Qt.TextAlignmentRole and c in (3, 4, 5):
            return int(Qt.AlignRight | Qt.AlignVCenter)

        if role == self.BALANCE_ROLE:
            return r.balance_due

        return None

    def headerData(self, section, orientation, role=Qt.DisplayRole):
        if orientation == Qt.Horizontal and role == Qt.DisplayRole:
            return self.HEADERS[section]
        return super().headerData(section, orientation, role)

    def at(self, row: int) -> Job:
        return self._rows[row]

    def replace(self, rows: list[Job], client_names: dict[str, str] | None = None):
        self.beginResetModel()
        self._rows = rows
        if client_names is not None:
            self._client_names = client_names
        self.endResetModel()
