# cas_gateway/api/models/files.py
from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Optional


class UploadedFile(BaseModel):
    """Details of one file stored on Swarm."""
    rootHash: str = Field(..., description="Content address (Swarm chunk-tree root) of the file")
    txHash: str = Field(..., description="Backend reference for the deposit (Bee upload tag)")
    fileName: str
    fileSize: int = Field(..., description="Size of the file in bytes")
    mimeType: str
    uploadedAt: datetime
    downloadUrl: str = Field(..., description="Gateway URL the file can be downloaded from")


class FileUploadResponse(BaseModel):
    """Response model for a successful single file upload."""
    success: bool = True
    message: str = Field(default="File uploaded successfully", description="Success message")
    data: UploadedFile


class BatchUploadItem(BaseModel):
    """Outcome for one file of a multi-file upload."""
    fileName: str
    success: bool
    data: Optional[UploadedFile] = None
    error: Optional[str] = None


class BatchUploadResponse(BaseModel):
    success: bool
    message: str
    data: List[BatchUploadItem]


class FileInfo(BaseModel):
    rootHash: str
    exists: bool
    downloadUrl: str


class FileInfoResponse(BaseModel):
    success: bool = True
    data: FileInfo


class NodeInfo(BaseModel):
    address: str
    fullNode: Optional[bool] = None


class NetworkInfo(BaseModel):
    connected: bool
    nodeCount: int
    nodes: List[NodeInfo] = Field(default_factory=list)


class WalletInfo(BaseModel):
    """Signing identity's wallet. Balance fields are None when the balance could not be read."""
    address: Optional[str] = None
    bzzBalance: Optional[float] = Field(default=None, description="BZZ balance of the wallet")
    nativeBalance: Optional[float] = Field(default=None, description="Native token (xDAI) balance of the wallet")
    error: Optional[str] = None


class NetworkStatusData(BaseModel):
    network: NetworkInfo
    wallet: WalletInfo
    timestamp: datetime


class NetworkStatusResponse(BaseModel):
    success: bool = True
    data: NetworkStatusData
