__all__ = [
	"Notifier", "PromptType", "MacSystem", "DirectoryIdentityAdapter", "EncryptionController",
	"ManagementAgent", "ManagementAPIClient", "ManagementTokenCache",
]

from .notifier import Notifier, PromptType
from .system import MacSystem
from .directory import DirectoryIdentityAdapter
from .filevault import EncryptionController
from .jamf_agent import ManagementAgent
from .jamf import ManagementAPIClient, ManagementTokenCache
