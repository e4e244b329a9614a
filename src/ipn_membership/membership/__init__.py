from ipn_membership.membership.check import MembershipChecker

__all__ = ["MembershipChecker"]
