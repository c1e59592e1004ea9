"""Bootstrap a single Kubernetes control-plane or worker node with kubeadm."""

__version__ = "0.1.0"
