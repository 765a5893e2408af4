from sync.channels import Channel, ChangeFeedSubscriber
from sync.context import SyncContext
from sync.coordination import CoordinationSync
from sync.entities import DataSync, EntityCache, EntitySyncHook
from sync.financial import FinancialSync, normalize_payments
from sync.permissions import PermissionResolver, has_any_permission, has_permission
from sync.promotion import PromotionWorkflow
from sync.residents import ResidentSync
from sync.session import MemoryStorage, SessionStore
