from PySide6.QtCore import QAbstractTableModel, Qt, QModelIndex
from ...utils.helpers import fmt_date, fmt_money
from ..ledger.entities import BudgetVersion
from ..ledger.status import BUDGET_APPROVED, budget_label


class BudgetVersionsTableModel(QAbstractTableModel):
    """
    Budget versions of a job, newest first.

    IS_LOCKED_ROLE tells views which rows are approved (read-only, not deletable).
    """

    HEADERS = ["Version", "Status", "Subtotal", "Discount", "Extras", "Tax", "Total", "Created"]

    IS_LOCKED_ROLE = Qt.UserRole + 1

    def __init__(self, rows: list[BudgetVersion]):
        super().__init__()
        self._rows = sorted(rows, key=lambda v: v.version, reverse=True)

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
                f"v{r.version}",
                budget_label(r.status),
                fmt_money(r.subtotal),
                fmt_money(r.discount),
                fmt_money(r.extra_charges),
                fmt_money(r.tax),
                fmt_money(r.total),
                fmt_date(r.created_at),
            ]
            return values[c]

        if role == Qt.ToolTipRole and r.rejection_reason:
            return r.rejection_reason

        if role == self.IS_LOCKED_ROLE:
            return r.status == BUDGET_APPROVED

        return None

    def headerData(self, section, orientation, role=Qt.DisplayRole):
        if orientation == Qt.Horizontal and role == Qt.DisplayRole:
            return self.HEADERS[section]
        return super().headerData(section, orientation, role)

    def at(self, row: int) -> BudgetVersion:
        return self._rows[row]

    def replace(self, rows: list[BudgetVersion]):
        self.beginResetModel()
        self._rows = sorted(rows, key=lambda v: v.version, reverse=True)
        self.endResetModel()
